"""
Task Gateway — Entry Point.

`python main.py serve` runs the webhook server. The other subcommands run a
single scheduled job and exit, for cron-style triggers:

    python main.py reminders
    python main.py daily-summary
    python main.py purge
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from gateway.bot.server import UPDATE_LOG_RETENTION, create_app
from gateway.bot.webhook import build_components

logger = logging.getLogger(__name__)


async def _run_job(name: str) -> None:
    components = build_components()
    messenger = components.messenger
    await messenger.initialize()
    try:
        if name == "reminders":
            result = await components.dispatcher.run_reminder_sweep()
            logger.info(
                "Reminders: %d sent, %d skipped, %d failed, %d unrecorded",
                result.sent, result.skipped, result.failed, result.unrecorded,
            )
        elif name == "daily-summary":
            sent = await components.dispatcher.run_daily_summary()
            logger.info("Daily summary sent to %d admin(s)", sent)
        elif name == "purge":
            now = datetime.now(timezone.utc)
            purged = components.linking.purge_stale_commands(now)
            purged += components.updates.purge_before(now - UPDATE_LOG_RETENTION)
            logger.info("Purged %d row(s)", purged)
    finally:
        await messenger.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Telegram task gateway")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the webhook HTTP server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("reminders", help="run one reminder sweep")
    sub.add_parser("daily-summary", help="send the admin daily summary")
    sub.add_parser("purge", help="delete stale pending commands")

    args = parser.parse_args()

    if args.command == "serve":
        import uvicorn

        logger.info("Starting task gateway on %s:%d", args.host, args.port)
        uvicorn.run(create_app(), host=args.host, port=args.port)
    else:
        asyncio.run(_run_job(args.command))


if __name__ == "__main__":
    main()
