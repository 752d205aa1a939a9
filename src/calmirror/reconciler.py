"""One reconciliation pass against one target calendar."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .eligibility import check_eligibility
from .mapping_store import MappingStore
from .models import SourceEvent, SyncOperation, SyncResult, TargetReport
from .retry import RetryPolicy
from .services.base import NotFoundError, ProviderError, TargetAdapter

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Brings one target in line with the fetched source events.

    The mapping store only ever changes after the matching remote call
    succeeded, so it always describes what actually exists on the target and
    every step can be repeated safely on the next pass.
    """

    def __init__(
        self,
        target: TargetAdapter,
        store: MappingStore,
        retry_policy: Optional[RetryPolicy] = None,
        operation_delay_seconds: float = 0.1,
        persist_each_operation: bool = False,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize reconciliation engine.

        Args:
            target: Adapter for the target calendar
            store: Mapping store owned by this engine
            retry_policy: Policy wrapped around every adapter call
            operation_delay_seconds: Pause after each adapter call
            persist_each_operation: Save the store after every change
            sleep: Coroutine used for the pause, mainly for tests
        """
        self.target = target
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.operation_delay_seconds = operation_delay_seconds
        self.persist_each_operation = persist_each_operation
        self._sleep = sleep or asyncio.sleep
        self.logger = logger.getChild(target.name)

    @property
    def name(self) -> str:
        return self.target.name

    async def reconcile(self, events: Sequence[SourceEvent]) -> TargetReport:
        """Run one pass: mirror eligible events, remove orphans, persist.

        Per-event provider errors are logged and recorded in the report; they
        never stop the pass.

        Raises:
            MappingStoreError: If the store cannot be saved
        """
        report = TargetReport(target=self.name)

        for event in events:
            eligibility = check_eligibility(event)
            if not eligibility:
                self.logger.info(f"Skipping {eligibility.reason} event: {event.display_name} ({event.start})")
                report.skipped += 1
                continue
            await self._mirror(event, report)

        await self._remove_orphans(events, report)

        self.store.save()
        report.mappings = len(self.store)
        self.logger.info(
            f"Target {self.name}: {report.created} created, {report.updated} updated, "
            f"{report.deleted} deleted, {report.skipped} skipped, {report.failed} failed"
        )
        return report

    async def _mirror(self, event: SourceEvent, report: TargetReport) -> None:
        ref = self.store.get(event.id)
        if ref is not None:
            await self._update(ref, event, report)
        else:
            await self._create(event, report)
        await self._pause()

    async def _create(self, event: SourceEvent, report: TargetReport) -> None:
        try:
            new_ref = await self.retry_policy.call(self.target.create, event)
        except ProviderError as e:
            # Nothing is recorded, so the next pass tries again.
            self.logger.error(f"Error creating event for {event.id}: {e}")
            report.record(self._result(SyncOperation.CREATE, event.id, False, error=e, summary=event.summary))
            return

        self.store.put(event.id, new_ref)
        self._persist_if_needed()
        report.record(self._result(SyncOperation.CREATE, event.id, True, ref=new_ref, summary=event.summary))

    async def _update(self, ref: str, event: SourceEvent, report: TargetReport) -> None:
        try:
            await self.retry_policy.call(self.target.update, ref, event)
        except NotFoundError as e:
            # Confirmed gone on the target: forget it so the next pass recreates it.
            self.logger.warning(f"Target event {ref} for {event.id} no longer exists: {e}")
            self.store.remove(event.id)
            self._persist_if_needed()
            report.record(self._result(SyncOperation.UPDATE, event.id, False, ref=ref, error=e, summary=event.summary))
            return
        except ProviderError as e:
            # The mapping stays; the next pass retries the update in place.
            self.logger.error(f"Error updating event {ref} for {event.id}: {e}")
            report.record(self._result(SyncOperation.UPDATE, event.id, False, ref=ref, error=e, summary=event.summary))
            return

        report.record(self._result(SyncOperation.UPDATE, event.id, True, ref=ref, summary=event.summary))

    async def _remove_orphans(self, events: Sequence[SourceEvent], report: TargetReport) -> None:
        fetched: Dict[str, SourceEvent] = {event.id: event for event in events}

        orphans = []
        for mapping in self.store.entries():
            event = fetched.get(mapping.source_event_id)
            if event is None:
                self.logger.info(f"Event {mapping.source_event_id} no longer exists in source calendar")
            else:
                eligibility = check_eligibility(event)
                if eligibility:
                    continue
                self.logger.info(f"Marking {eligibility.reason} event as orphaned: {event.display_name}")
            orphans.append(mapping)

        self.logger.info(f"Found {len(orphans)} orphaned events to delete")
        for mapping in orphans:
            await self._delete(mapping.source_event_id, mapping.target_event_ref, report)
            await self._pause()

    async def _delete(self, source_event_id: str, ref: str, report: TargetReport) -> None:
        try:
            await self.retry_policy.call(self.target.delete, ref)
        except NotFoundError:
            self.logger.info(f"Target event {ref} was already gone")
        except ProviderError as e:
            self.logger.error(f"Error deleting event {ref}: {e}")
            report.record(self._result(SyncOperation.DELETE, source_event_id, False, ref=ref, error=e))
            return

        self.store.remove(source_event_id)
        self._persist_if_needed()
        report.record(self._result(SyncOperation.DELETE, source_event_id, True, ref=ref))

    def _persist_if_needed(self) -> None:
        if self.persist_each_operation:
            self.store.save()

    async def _pause(self) -> None:
        if self.operation_delay_seconds > 0:
            await self._sleep(self.operation_delay_seconds)

    def _result(
        self,
        operation: SyncOperation,
        source_event_id: str,
        success: bool,
        ref: Optional[str] = None,
        error: Optional[Exception] = None,
        summary: Optional[str] = None,
    ) -> SyncResult:
        return SyncResult(
            operation=operation,
            source_event_id=source_event_id,
            target=self.name,
            success=success,
            target_event_ref=ref,
            error_message=str(error) if error else None,
            event_summary=summary,
        )
