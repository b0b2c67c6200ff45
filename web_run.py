from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _bootstrap_src() -> None:
    src = Path(__file__).resolve().parent / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def main() -> int:
    _bootstrap_src()

    ap = argparse.ArgumentParser(description="Serve the shop simulator HTTP API")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=8000)
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args()

    import uvicorn

    from shopsim.logger import parse_level, setup_logger

    setup_logger(level=parse_level(args.log_level))
    uvicorn.run("shopsim.webapp:app", host=args.host, port=args.port, reload=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
