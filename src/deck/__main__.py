"""Main entry point for ``python -m deck``."""

from deck.cli.main import main


if __name__ == "__main__":
    main()
