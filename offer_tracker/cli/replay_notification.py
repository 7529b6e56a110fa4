# offer_tracker/cli/replay_notification.py
import asyncio
import click

from offer_tracker.core.logging_config import configure_logging
from offer_tracker.database import engine, get_session
from offer_tracker.services.notification_router import NotificationRouter


@click.command("replay-notification")
@click.argument('payload_file', type=click.File('r'))
def replay_notification(payload_file):
    """Route a saved notification body without going through the queue"""
    configure_logging()
    body = payload_file.read()

    async def _replay():
        async with get_session() as session:
            outcome = await NotificationRouter(session).route(body)
        await engine.dispose()
        print(f"{outcome.kind.value}: {outcome.reason or '-'}")

    asyncio.run(_replay())

if __name__ == "__main__":
    replay_notification()
