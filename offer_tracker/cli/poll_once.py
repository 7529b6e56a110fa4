# offer_tracker/cli/poll_once.py
import asyncio
import click

from offer_tracker.core.logging_config import configure_logging
from offer_tracker.database import engine
from offer_tracker.scheduler import get_poller


@click.command("poll-once")
@click.option('--batches', default=1, show_default=True, help='Number of receive calls to make')
def poll_once(batches):
    """Receive notifications from the queue and process them"""
    configure_logging()

    async def _poll():
        poller = get_poller()
        total = 0
        for _ in range(batches):
            received = await poller.poll_once()
            if received < 0:
                print("Queue error, see log for details")
                break
            total += received
            await poller.drain()
            if received == 0:
                break
        await engine.dispose()
        print(f"Processed {total} message(s)")

    asyncio.run(_poll())

if __name__ == "__main__":
    poll_once()
