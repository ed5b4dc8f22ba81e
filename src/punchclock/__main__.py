"""Entry point for ``python -m punchclock``."""

from punchclock.cli import main

if __name__ == "__main__":
    main()
