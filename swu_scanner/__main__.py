"""
swu_scanner/__main__.py: Entry point for running CLI as module
Allows: python -m swu_scanner <command>
"""

from swu_scanner.cli.main import cli

if __name__ == '__main__':
    cli()
