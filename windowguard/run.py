"""Run the rate limit service with uvicorn."""
from __future__ import annotations

import argparse

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="windowguard rate limit service")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker processes (use RATE_LIMIT_BACKEND=redis when > 1)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    # log_config=None keeps the JSON handler installed by create_app
    uvicorn.run(
        "windowguard.main:app",
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
