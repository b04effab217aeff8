#!/usr/bin/env python3
"""
Runner for the Polymarket Whale Tracker dashboard API.

Usage:
    python run.py                      # 127.0.0.1:8000
    python run.py --port 9000 --reload
    HOST=0.0.0.0 PORT=8080 python run.py

Saved trackers resume automatically shortly after startup.
"""
import argparse
import os

import uvicorn

from whale_tracker.categories import TRACKER_CATEGORIES
from whale_tracker.config import settings


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Polymarket whale tracker API server")
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Restart on code changes (development only)",
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL.lower())
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    base = f"http://{args.host}:{args.port}"
    print("🐋 Polymarket Whale Tracker")
    print(f"   Categories: {', '.join(TRACKER_CATEGORIES)}")
    print(f"   State:      {settings.DATABASE_URL}")
    print(f"   Docs:       {base}/docs")
    print(f"   Trackers:   {base}/trackers")
    print(f"   Alerts:     {base}/alerts")

    uvicorn.run(
        "whale_tracker.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
