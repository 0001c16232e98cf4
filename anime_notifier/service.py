"""
Anime notifier service.

Wires the schedule provider, the anime store and the message bus into the
two operations exposed to external triggers:

- update_schedule: fetch the provider calendar and reconcile the store
- send_notifications: collect due subscriptions and publish them
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional, Type, TypeVar

from .config import Settings
from .database import DatabaseManager
from .dispatcher import BusPublisher, Dispatcher
from .errors import NotifierError, PublishError, StoreError
from .observability import Metrics, setup_logging
from .provider import ScheduleProvider
from .reconciler import ReconcileResult, reconcile
from .subscriptions import collect_due

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationService:
    """Entry points for schedule sync and notification dispatch."""

    def __init__(
        self,
        settings: Settings,
        db_manager: Optional[DatabaseManager] = None,
        provider: Optional[ScheduleProvider] = None,
        publisher: Optional[BusPublisher] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.settings = settings
        self.db_manager = db_manager or DatabaseManager(settings)
        self.provider = provider or ScheduleProvider(settings)
        self.publisher = publisher or BusPublisher(settings)
        self.metrics = metrics or Metrics.init(settings)
        self.dispatcher = Dispatcher(settings, self.publisher, self.metrics)

    async def initialize(self):
        """Initialize the notification service."""
        await self.db_manager.initialize()
        logger.info("Notification service initialized")

    async def close(self):
        """Close the notification service."""
        try:
            await self.provider.close()
        finally:
            try:
                await self.publisher.close()
            finally:
                await self.db_manager.close()
        logger.info("Notification service closed")

    async def _with_deadline(self, coro: Awaitable[T], error_cls: Type[NotifierError], operation: str) -> T:
        """Await ``coro`` under the configured operation timeout, cancelling it on expiry."""
        timeout = self.settings.operation_timeout
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as e:
            raise error_cls(f"{operation} exceeded the {timeout}s deadline") from e

    async def update_schedule(self) -> ReconcileResult:
        """
        Fetch the provider calendar and reconcile the anime store with it.

        Raises:
            FetchError, DecodeError: the store was not touched
            StoreError: the reconciliation was rolled back
        """
        with self.metrics.timer("update_schedule"):
            try:
                entries = await self.provider.fetch()
                result = await self._with_deadline(
                    reconcile(self.db_manager, entries), StoreError, "Schedule reconciliation"
                )
            except NotifierError as e:
                self.metrics.record_reconcile(e.kind.value)
                raise
            finally:
                self.metrics.push()

        self.metrics.record_reconcile("success", result.as_dict())
        return result

    async def send_notifications(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Collect notifications due at ``now`` and publish them.

        Args:
            now: Cut-off airing time (defaults to the current UTC time)

        Returns:
            Dictionary with collected and published counts

        Raises:
            StoreError: nothing was marked and nothing was sent
            PublishError: anime were marked notified but dispatch stopped early
        """
        if now is None:
            now = datetime.now(timezone.utc)

        with self.metrics.timer("send_notifications"):
            try:
                events = await self._with_deadline(
                    collect_due(self.db_manager, now), StoreError, "Notification collection"
                )
                self.metrics.notifications_collected.inc(len(events))
                published = await self._with_deadline(
                    self.dispatcher.dispatch(events), PublishError, "Notification dispatch"
                )
            finally:
                self.metrics.push()

        return {
            'now': now.isoformat(),
            'collected': len(events),
            'published': published,
        }


async def async_main(command: str) -> int:
    """Main async function for CLI execution"""
    settings = Settings()
    setup_logging(settings)

    if command == "serve":
        import uvicorn
        from .api import create_app

        config = uvicorn.Config(
            create_app(settings=settings), host=settings.host, port=settings.port,
            log_level=settings.log_level.lower()
        )
        await uvicorn.Server(config).serve()
        return 0

    service = NotificationService(settings)
    try:
        await service.initialize()

        if command == "init-db":
            await service.db_manager.create_tables()
        elif command == "update-schedule":
            result = await service.update_schedule()
            logger.info(f"Schedule updated: {result.as_dict()}")
        elif command == "send-notifications":
            report = await service.send_notifications()
            logger.info(f"Notifications sent: {report['published']}/{report['collected']}")
        return 0

    except NotifierError as e:
        logger.error(f"{command} failed ({e.kind.value}): {' <- '.join(e.chain())}")
        return 1

    finally:
        await service.close()


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Anime Notifier - sync airing schedules and notify subscribers',
        prog='python -m anime_notifier'
    )
    parser.add_argument(
        'command',
        choices=['init-db', 'update-schedule', 'send-notifications', 'serve'],
        help='init-db creates the schema; update-schedule and send-notifications run once; '
             'serve starts the HTTP trigger API',
    )

    args = parser.parse_args()

    exit_code = asyncio.run(async_main(args.command))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
