#!/usr/bin/env python3
"""
Local launcher for the Dishola search API.
"""
import argparse
import sys

import uvicorn

from dishola.utils.config import get_settings


def parse_args(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Serve the Dishola search API with uvicorn")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=settings.environment == "development",
        help="Restart on code changes (default: on in development)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    if sys.version_info < (3, 11):
        sys.exit(f"❌ Python 3.11 or higher is required (running {sys.version.split()[0]})")

    args = parse_args(argv)
    uvicorn.run(
        "dishola.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )


if __name__ == "__main__":
    main()
