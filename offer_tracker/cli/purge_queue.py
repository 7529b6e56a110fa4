# offer_tracker/cli/purge_queue.py
import asyncio
import click

from offer_tracker.core.logging_config import configure_logging
from offer_tracker.scheduler import get_poller


@click.command("purge-queue")
@click.confirmation_option(prompt='Delete every message on the notification queue?')
def purge_queue():
    """Delete all pending notifications from the queue"""
    configure_logging()

    async def _purge():
        poller = get_poller()
        if await poller.purge():
            print(f"Purged {poller.queue.queue_url}")
        else:
            raise click.ClickException("Queue purge failed, see log for details")

    asyncio.run(_purge())

if __name__ == "__main__":
    purge_queue()
