import click

from offer_tracker.cli import create_tables, poll_once, purge_queue, replay_notification


@click.group()
def cli():
    """Offer tracker maintenance commands."""


cli.add_command(create_tables.create_tables)
cli.add_command(purge_queue.purge_queue)
cli.add_command(poll_once.poll_once)
cli.add_command(replay_notification.replay_notification)
