"""Main entry point for the bookledger package."""

from bookledger.cli import main

if __name__ == "__main__":
    main()
