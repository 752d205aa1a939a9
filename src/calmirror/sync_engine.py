"""Runs one full pass: fetch once, reconcile every target."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytz

from .config import ConfigurationError, Settings
from .mapping_store import MappingStore
from .models import SyncReport, TargetConfig, TargetKind, TargetReport
from .reconciler import ReconciliationEngine
from .retry import RetryPolicy
from .services import (
    CalDAVTargetAdapter,
    GoogleCalendarClient,
    GoogleSourceFetcher,
    GoogleTargetAdapter,
    ProviderError,
    SourceEventFetcher,
    TargetAdapter,
)
from .translation import EventTranslator

logger = logging.getLogger(__name__)


@dataclass
class SyncTarget:
    """An adapter paired with the mapping store it owns."""

    adapter: TargetAdapter
    store: MappingStore
    ready: bool = False

    @property
    def name(self) -> str:
        return self.adapter.name

    async def prepare(self) -> None:
        """Authenticate the adapter and load its store, once per engine.

        A failure leaves the target unprepared, so the next pass tries again.

        Raises:
            AuthenticationError: If the target cannot be reached or authorized
            MappingStoreError: If the mapping file is unreadable
        """
        if self.ready:
            return
        await self.adapter.authenticate()
        self.store.load()
        self.ready = True


class SyncEngine:
    """Mirrors the source calendar onto every configured target."""

    def __init__(self, settings: Settings, source: SourceEventFetcher, targets: List[SyncTarget]):
        """Initialize sync engine.

        Args:
            settings: Application settings
            source: Fetcher for the source calendar
            targets: Targets with their mapping stores
        """
        if not targets:
            raise ConfigurationError("At least one target calendar is required")
        self.settings = settings
        self.source = source
        self.targets = targets
        sync_config = settings.sync_config
        self.reconcilers = [
            ReconciliationEngine(
                target.adapter,
                target.store,
                retry_policy=RetryPolicy(
                    backoff_seconds=sync_config.retry_backoff_seconds,
                    retries=sync_config.retry_attempts,
                ),
                operation_delay_seconds=sync_config.operation_delay_seconds,
                persist_each_operation=sync_config.persist_each_operation,
            )
            for target in targets
        ]
        self.logger = logger.getChild('sync_engine')
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncEngine":
        """Build the source fetcher and target adapters described by ``settings``.

        Raises:
            ConfigurationError: If required values are missing
        """
        settings.require_complete()
        sync_config = settings.sync_config
        translator = EventTranslator(
            prefix=sync_config.event_prefix,
            placeholder_title=sync_config.placeholder_title,
            description_note=sync_config.description_note,
        )

        source_client = GoogleCalendarClient(settings.resolved_source_token_path, settings.google_scopes)
        source = GoogleSourceFetcher(settings.source_calendar_id, source_client)

        targets = [
            SyncTarget(
                adapter=build_target_adapter(settings, target, translator),
                store=MappingStore(settings.mapping_file_for(target)),
            )
            for target in settings.get_active_targets()
        ]
        return cls(settings, source, targets)

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def initialize(self) -> None:
        """Authenticate the source calendar.

        Targets are prepared inside their own part of each pass, so one
        unreachable target never keeps the others from syncing.

        Raises:
            AuthenticationError: If the source cannot be authorized
        """
        if self._initialized:
            return
        await self.source.authenticate()
        self._initialized = True
        self.logger.info(f"Sync engine initialized with {len(self.targets)} target(s)")

    def sync_window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        now = now or datetime.now(pytz.UTC)
        sync_config = self.settings.sync_config
        return (
            now - timedelta(days=sync_config.sync_past_days),
            now + timedelta(days=sync_config.sync_future_days),
        )

    async def sync_calendars(self) -> SyncReport:
        """Run one pass across all targets.

        A failed fetch aborts the pass before any target is touched. A failure
        confined to one target is recorded in its report and does not affect
        the others.
        """
        await self.initialize()
        time_min, time_max = self.sync_window()
        report = SyncReport(time_min=time_min, time_max=time_max)
        self.logger.info(f"Starting calendar sync {report.sync_id} for source {self.source.calendar_id}")

        try:
            events = await self.source.fetch(time_min, time_max)
        except ProviderError as e:
            self.logger.error(f"Error fetching source events, skipping this pass: {e}")
            report.error = str(e)
            report.completed_at = datetime.now(pytz.UTC)
            return report

        report.fetched = len(events)
        results = await asyncio.gather(
            *(
                self._sync_target(target, reconciler, events)
                for target, reconciler in zip(self.targets, self.reconcilers)
            ),
            return_exceptions=True
        )

        for reconciler, result in zip(self.reconcilers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self.logger.error(f"Sync of target {reconciler.name} failed: {result}")
                result = TargetReport(target=reconciler.name, error=str(result), mappings=len(reconciler.store))
            report.targets.append(result)

        report.completed_at = datetime.now(pytz.UTC)
        self.logger.info(f"Calendar sync {report.sync_id} completed")
        return report

    async def _sync_target(self, target: SyncTarget, reconciler: ReconciliationEngine, events) -> TargetReport:
        await target.prepare()
        return await reconciler.reconcile(events)


def build_target_adapter(
    settings: Settings,
    target: TargetConfig,
    translator: EventTranslator,
) -> TargetAdapter:
    """Create the adapter for one configured target."""
    if target.kind == TargetKind.CALDAV:
        return CalDAVTargetAdapter(
            name=target.name,
            calendar_id=target.calendar_id,
            translator=translator,
            url=target.caldav_url,
            username=target.caldav_username,
            password=target.caldav_password,
            timeout=settings.request_timeout_seconds,
        )

    # googleapiclient HTTP objects are not thread-safe; never share a client between targets.
    client = GoogleCalendarClient(settings.token_path_for(target), settings.google_scopes)
    return GoogleTargetAdapter(target.name, target.calendar_id, translator, client)
