from __future__ import annotations

import sys
from pathlib import Path


def _bootstrap_src() -> None:
    # Allow `python run.py` from a plain checkout (no pip install).
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _utf8_console() -> None:
    for stream in (sys.stdout, sys.stderr):
        reconf = getattr(stream, "reconfigure", None)
        if callable(reconf):
            try:
                reconf(encoding="utf-8")
            except (OSError, ValueError):
                pass


def main() -> int:
    _bootstrap_src()
    _utf8_console()

    from shopsim.cli import main as game_main

    return game_main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
