"""Periodic refresh loop, one asyncio task per conversation.

A stop request is an Event the loop checks between cycles. A cycle that is
already running always finishes (including the state save), even when the
task itself is cancelled during shutdown.
"""

import asyncio
from dataclasses import dataclass

from src.timetable_sync.config import SyncConfig
from src.timetable_sync.cycle import CycleReport, refresh
from src.timetable_sync.errors import StoreError
from src.timetable_sync.logging import get_logger
from src.timetable_sync.messaging import MessagePort
from src.timetable_sync.pinning import today_in
from src.timetable_sync.source import GoogleSheetSource
from src.timetable_sync.store import JsonStateStore

log = get_logger(__name__)


@dataclass
class _Job:
    task: asyncio.Task
    stop: asyncio.Event


class ConversationScheduler:
    """Owns the refresh tasks for all subscribed conversations."""

    def __init__(
        self,
        *,
        store: JsonStateStore,
        source: GoogleSheetSource,
        port: MessagePort,
        config: SyncConfig,
    ) -> None:
        self.store = store
        self.source = source
        self.port = port
        self.config = config
        self._jobs: dict[int, _Job] = {}
        # At most one cycle in flight per chat, even across stop/start
        self._locks: dict[int, asyncio.Lock] = {}

    def running(self) -> list[int]:
        return sorted(
            cid
            for cid, job in self._jobs.items()
            if not job.task.done() and not job.stop.is_set()
        )

    def start(self, conversation_id: int) -> None:
        """Start the refresh loop for a conversation (no-op if already running)."""
        job = self._jobs.get(conversation_id)
        if job is not None and not job.task.done() and not job.stop.is_set():
            log.debug("scheduler_already_running", conversation_id=conversation_id)
            return

        stop = asyncio.Event()
        task = asyncio.create_task(
            self._loop(conversation_id, stop),
            name=f"timetable-sync-{conversation_id}",
        )
        self._jobs[conversation_id] = _Job(task=task, stop=stop)
        log.info("scheduler_started", conversation_id=conversation_id)

    async def stop(self, conversation_id: int) -> None:
        """Ask a loop to end after its current cycle and wait for it."""
        job = self._jobs.get(conversation_id)
        if job is None:
            return
        job.stop.set()
        try:
            await job.task
        finally:
            if self._jobs.get(conversation_id) is job:
                del self._jobs[conversation_id]
        log.info("scheduler_stopped", conversation_id=conversation_id)

    async def stop_all(self) -> None:
        for conversation_id in list(self._jobs):
            await self.stop(conversation_id)

    async def run_once(
        self, conversation_id: int, *, force_send: bool = False
    ) -> CycleReport:
        """Load the stored state and run a single refresh cycle.

        Raises:
            StoreError: If the state cannot be loaded or saved.
        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            state = self.store.load(conversation_id)
            return await refresh(
                state,
                source=self.source,
                port=self.port,
                store=self.store,
                today=today_in(self.config.timezone),
                force_send=force_send,
                default_link=self.config.default_link,
            )

    async def _run_shielded(self, conversation_id: int) -> CycleReport:
        # Cancellation must not cut a cycle between delivery and save
        cycle = asyncio.ensure_future(self.run_once(conversation_id))
        try:
            return await asyncio.shield(cycle)
        except asyncio.CancelledError:
            log.info("cycle_finishing_before_cancel", conversation_id=conversation_id)
            await cycle
            raise

    def _interval_seconds(self, conversation_id: int) -> float:
        state = self.store.load(conversation_id)
        return state.interval.to_seconds(self.config.min_poll_minutes)

    async def _loop(self, conversation_id: int, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await self._run_shielded(conversation_id)
                delay = self._interval_seconds(conversation_id)
            except StoreError as e:
                log.error(
                    "cycle_not_persisted",
                    conversation_id=conversation_id,
                    error=str(e),
                    retry_in=self.config.store_retry_seconds,
                )
                delay = self.config.store_retry_seconds
            except Exception as e:
                # A broken cycle must not take the loop (or other chats) down
                log.exception(
                    "cycle_crashed",
                    conversation_id=conversation_id,
                    error=str(e),
                )
                delay = self.config.store_retry_seconds

            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        log.debug("scheduler_loop_exited", conversation_id=conversation_id)
