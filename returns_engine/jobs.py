"""
Batch entry points.

Usage:
    returns-engine-jobs advance [--today YYYY-MM-DD]
    returns-engine-jobs seed
    returns-engine-jobs create-schema
    returns-engine-jobs serve [--host HOST] [--port PORT]
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

import uvicorn

from returns_engine.config import settings
from returns_engine.infrastructure.database.session import SessionLocal, create_schema
from returns_engine.infrastructure.observability.logging import setup_logging
from returns_engine.services.payouts import PayoutScheduleStateMachine
from returns_engine.services.seed import seed_defaults


async def run_advance(today: date | None = None) -> int:
    """Advance due payouts; exit code 3 when any payout failed"""
    async with SessionLocal() as db:
        result = await PayoutScheduleStateMachine(db).advance_due_schedules(today=today)
    for failure in result.failures:
        logging.error("Payout not advanced", extra=failure)
    return 3 if result.failures else 0


async def run_seed() -> int:
    async with SessionLocal() as db:
        await seed_defaults(db)
    return 0


async def run_create_schema() -> int:
    await create_schema()
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="returns-engine-jobs", description="Returns engine batch jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    advance = commands.add_parser("advance", help="Process and confirm payouts due on or before --today")
    advance.add_argument("--today", type=date.fromisoformat, help="Business date (YYYY-MM-DD), default today")

    commands.add_parser("seed", help="Create the default plan rule and catalog when empty")
    commands.add_parser("create-schema", help="Create missing tables")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging(settings.log_level)
    if args.command == "serve":
        uvicorn.run("returns_engine.api.main:app", host=args.host, port=args.port, log_config=None)
        return 0

    logging.info("Job started", extra={"job": args.command})

    if args.command == "advance":
        code = asyncio.run(run_advance(args.today))
    elif args.command == "seed":
        code = asyncio.run(run_seed())
    else:
        code = asyncio.run(run_create_schema())

    logging.info("Job finished", extra={"job": args.command, "exit_code": code})
    return code


if __name__ == "__main__":
    sys.exit(main())
