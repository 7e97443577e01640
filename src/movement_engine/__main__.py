"""Module entry point: python -m movement_engine ..."""

from movement_engine.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
