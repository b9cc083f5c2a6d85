"""Module entrypoint for `python -m remote_projects`."""

from __future__ import annotations

from remote_projects.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
