"""CLI entry point for Earnflow.

Runs the API and the job scheduler in a single uvicorn process. The scheduler
lives inside the app lifespan, so there is no worker-count option: two
workers would mean two schedulers competing for the same locks every tick.
"""

import argparse

import uvicorn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="earnflow", description="Earnings ingestion and publish pipeline"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    uvicorn.run(
        "earnflow.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        # setup_logging() owns the handlers, uvicorn's access/error logs included
        log_config=None,
    )


if __name__ == "__main__":
    main()
