"""Module entry point: python -m track_recorder ..."""

from __future__ import annotations

from track_recorder.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
