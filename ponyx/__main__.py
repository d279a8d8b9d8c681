"""
PONYX CLI Entry Point
=====================

Allows running ponyx as a module: python -m ponyx
"""

from ponyx.cli.main import main

if __name__ == "__main__":
    main()
