"""
Entry point for running Corsync as a module.

Usage:
    python -m corsync [command] [options]
"""

from corsync.cli import main

if __name__ == "__main__":
    main()
