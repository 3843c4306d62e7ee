"""Main entry point when executing wtmigrate as a package.

This allows running the package using python -m wtmigrate.
"""

from wtmigrate.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
