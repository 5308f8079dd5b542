"""crossbake command-line interface (argv dispatch in main.py)."""
