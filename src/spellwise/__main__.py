"""Main entry point: python -m spellwise."""
from spellwise.cli import run


def main() -> None:
    """Run the command line."""
    run()


if __name__ == "__main__":
    main()
