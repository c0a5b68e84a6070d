"""
slpkit CLI Entry Point

Allows running the package as a module: python -m slpkit
"""

from slpkit.cli import main

if __name__ == "__main__":
    main()
