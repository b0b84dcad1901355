"""CLI entry point for the Unibox API server."""

import argparse
import os


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="unibox-server",
        description="Unibox API server and sync workers",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Local dev mode: SQLite database and in-memory queue, no Redis required",
    )
    parser.add_argument("--log-level", default=None, help="Override UNIBOX_LOG_LEVEL")
    args = parser.parse_args(argv)

    # Settings are read at import time, so the environment must be set first
    if args.local:
        os.environ["UNIBOX_LOCAL_MODE"] = "1"
    if args.log_level:
        os.environ["UNIBOX_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("unibox.main:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
