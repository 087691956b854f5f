"""Module entrypoint for running Chaptervoice as ``python -m chaptervoice``."""

from __future__ import annotations

from chaptervoice.cli import main


if __name__ == "__main__":
    main()
