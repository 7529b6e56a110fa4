# offer_tracker/services/notification_poller.py
"""
Polls the notification queue and processes each message in its own task.

A slow reconciliation never blocks the next poll. A message is deleted only
after the router has committed the notification record in a terminal state;
deferred messages and messages whose task crashed stay on the queue and are
redelivered after the visibility timeout.
"""
import asyncio
import logging
from typing import Callable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from offer_tracker.core.config import Settings, get_settings
from offer_tracker.core.exceptions import QueueTransportError
from offer_tracker.services.listing_locks import ListingLockRegistry, listing_locks
from offer_tracker.services.listing_resolver import ListingResolver, PricingApiListingResolver
from offer_tracker.services.notification_router import DispatchOutcome, NotificationRouter
from offer_tracker.services.queue_gateway import QueueClient, QueueMessage
from offer_tracker.services.report_downloader import (
    ReportCallbackRegistry,
    ReportDownloader,
    default_report_callbacks,
)

logger = logging.getLogger(__name__)


class NotificationPoller:
    """
    Args:
        queue: Queue the notifications are delivered to
        session_factory: Creates one AsyncSession per message
        listing_resolver, report_downloader, report_callbacks: Passed to every router
        settings: Application settings
        locks: Listing lock registry shared by all message tasks
    """

    def __init__(
        self,
        queue: QueueClient,
        session_factory: Callable[[], AsyncSession],
        listing_resolver: Optional[ListingResolver] = None,
        report_downloader: Optional[ReportDownloader] = None,
        report_callbacks: Optional[ReportCallbackRegistry] = None,
        settings: Optional[Settings] = None,
        locks: Optional[ListingLockRegistry] = None,
    ):
        self.queue = queue
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        # One resolver for every message task so its rate limit is shared
        self.listing_resolver = listing_resolver or PricingApiListingResolver(self.settings)
        self.report_downloader = report_downloader or ReportDownloader(self.settings)
        self.report_callbacks = report_callbacks or default_report_callbacks(self.settings)
        self.locks = locks or listing_locks
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def poll_once(self) -> int:
        """
        Fetch one batch and schedule a task per message.

        Returns:
            Number of messages received, 0 if the queue was empty, -1 on a queue error
        """
        try:
            messages = await self.queue.receive(
                self.settings.QUEUE_MAX_MESSAGES,
                self.settings.QUEUE_WAIT_SECONDS,
            )
        except QueueTransportError as e:
            logger.error(f"Error receiving notifications: {e}")
            return -1

        for message in messages:
            task = asyncio.create_task(self.handle_message(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if messages:
            logger.debug(f"Received {len(messages)} notification(s)")
        return len(messages)

    async def drain(self) -> None:
        """Wait for every in-flight message task."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_message(self, message: QueueMessage) -> Optional[DispatchOutcome]:
        """Route one message; delete it from the queue on a terminal outcome."""
        async with self.session_factory() as session:
            router = NotificationRouter(
                session,
                listing_resolver=self.listing_resolver,
                report_downloader=self.report_downloader,
                report_callbacks=self.report_callbacks,
                settings=self.settings,
                locks=self.locks,
            )
            try:
                outcome = await router.route(message.body)
            except Exception as e:
                logger.exception(f"Unhandled error processing message {message.message_id}: {str(e)}")
                await session.rollback()
                return None

        if outcome.acknowledge:
            try:
                await self.queue.delete(message.receipt_handle)
            except QueueTransportError as e:
                logger.error(f"Failed to delete message from queue: {e}")
        return outcome

    async def purge(self) -> bool:
        try:
            await self.queue.purge()
        except QueueTransportError as e:
            logger.error(f"Error purging queue: {e}")
            return False
        return True
