# heatshield/cli/__init__.py
