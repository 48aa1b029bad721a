"""
LivenessMonitor: infers whether the off-chain worker is alive and making
progress.

The belief combines two sources. A periodic refresh reads platform
statistics and worker identity and scans a trailing block window for
``SentimentResult`` events; a live subscription marks the worker online
the moment a new result is observed. Worker registrations trigger an
immediate refresh outside the regular schedule.

Both sources write the same :class:`LivenessSnapshot`. Each write builds
the next snapshot from the current one and swaps it in with a single
assignment, with no suspension point in between.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sentioasis_runtime.abi import SENTIMENT_RESULT_EVENT
from sentioasis_runtime.contract import ContractSession
from sentioasis_runtime.errors import SessionError, TransientReadFailure
from sentioasis_runtime.events import ListenerRegistry, StateListener, Subscription
from sentioasis_runtime.types import (
    ContractSessionState,
    ErrorInfo,
    LivenessSnapshot,
    SentimentResult,
    WorkerRegistration,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_SCAN_WINDOW_BLOCKS = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class LivenessMonitor:
    """Tracks worker liveness for the current contract binding.

    Args:
        contract: The contract session to follow.
        poll_interval: Seconds between scheduled refreshes.
        scan_window_blocks: Size of the trailing block window scanned for
            results. Its meaning in wall-clock time depends on the chain's
            block time.
        clock: Source of "now" for live observations.
    """

    def __init__(
        self,
        contract: ContractSession,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        scan_window_blocks: int = DEFAULT_SCAN_WINDOW_BLOCKS,
        clock: Clock | None = None,
    ) -> None:
        self._contract = contract
        self._poll_interval = poll_interval
        self._scan_window_blocks = scan_window_blocks
        self._clock = clock or _utcnow

        self._snapshot = LivenessSnapshot()
        self._listeners = ListenerRegistry("liveness")
        self._subscriptions: list[Subscription] = []
        self._contract_subscription: Subscription | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[Any]] = set()
        self._refresh_lock = asyncio.Lock()
        self._generation = 0
        self._refresh_count = 0
        # Local clock time of the latest live result; chain timestamps never land here
        self._last_live_at: datetime | None = None

    @property
    def snapshot(self) -> LivenessSnapshot:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def refresh_count(self) -> int:
        """Number of refreshes started since construction."""
        return self._refresh_count

    @property
    def scan_window_blocks(self) -> int:
        return self._scan_window_blocks

    def subscribe(self, listener: StateListener) -> Subscription:
        """Register an ``(old_snapshot, new_snapshot)`` listener."""
        return self._listeners.add(listener)

    # ---- Lifecycle ----

    async def start(self) -> None:
        """Follow the contract session; activate now if it is ready."""
        if self._contract_subscription is None:
            self._contract_subscription = self._contract.subscribe(self._on_contract_state)
        if self._contract.is_ready:
            await self._activate()

    async def stop(self) -> None:
        if self._contract_subscription is not None:
            self._contract_subscription.cancel()
            self._contract_subscription = None
        await self._deactivate()

    async def _on_contract_state(
        self, old: ContractSessionState, new: ContractSessionState
    ) -> None:
        if new.is_ready:
            await self._activate()
        elif old.is_ready:
            await self._deactivate()
            await self._replace(lambda _: LivenessSnapshot())

    async def _activate(self) -> None:
        await self._deactivate()
        self._last_live_at = None
        await self._replace(lambda _: LivenessSnapshot())
        self._subscriptions = [
            self._contract.subscribe_to_results(self._on_result),
            self._contract.subscribe_to_worker_registrations(self._on_worker_registered),
        ]
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "Liveness monitor started (interval=%.0fs, window=%d blocks)",
            self._poll_interval,
            self._scan_window_blocks,
        )

    async def _deactivate(self) -> None:
        """Cancel subscriptions, the timer and in-flight refreshes."""
        self._generation += 1
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []

        tasks = list(self._refresh_tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        self._poll_task = None
        self._refresh_tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self) -> None:
        """Refresh immediately, then on every interval tick."""
        try:
            while True:
                await self.refresh()
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            pass

    # ---- Snapshot updates ----

    async def _replace(self, build: Callable[[LivenessSnapshot], LivenessSnapshot]) -> None:
        old = self._snapshot
        new = build(old)
        if new == old:
            return
        self._snapshot = new
        await self._listeners.notify(old, new)

    async def refresh(self) -> LivenessSnapshot:
        """Re-read statistics, worker identity and recent activity.

        Read failures are recorded as ``last_error``; fields from earlier
        successful refreshes are kept.
        """
        async with self._refresh_lock:
            self._refresh_count += 1
            generation = self._generation
            started = self._clock()

            try:
                stats, enabled = await self._contract.get_platform_stats()
            except Exception as exc:
                return await self._record_failure(exc, generation)

            failure: Exception | None = None
            update: dict[str, Any] = {"platform_stats": stats, "worker_enabled": enabled}

            if enabled:
                try:
                    app_id, worker = await self._contract.get_worker_identity()
                    update["app_id"] = app_id
                    update["worker_address"] = worker
                except Exception as exc:
                    logger.warning("Could not fetch worker details: %s", exc)
                    failure = exc
            else:
                update["app_id"] = None
                update["worker_address"] = None

            scanned_online: bool | None = None
            scanned_at: datetime | None = None
            try:
                events = await self._contract.recent_events(
                    SENTIMENT_RESULT_EVENT, self._scan_window_blocks
                )
                scanned_online = bool(events)
                if events:
                    scanned_at = events[-1].timestamp
            except Exception as exc:
                logger.warning("Failed to check worker online status: %s", exc)
                failure = failure or exc

            if generation != self._generation:
                return self._snapshot

            error_info = self._to_error_info(failure) if failure else None

            def _merge(current: LivenessSnapshot) -> LivenessSnapshot:
                merged = dict(update)
                merged["last_error"] = error_info
                merged["refreshed_at"] = self._clock()
                live_since_start = (
                    current.is_online
                    and self._last_live_at is not None
                    and self._last_live_at >= started
                )
                if scanned_online is True:
                    merged["is_online"] = True
                    merged["last_activity_at"] = _latest(current.last_activity_at, scanned_at)
                elif scanned_online is False and not live_since_start:
                    merged["is_online"] = False
                return current.model_copy(update=merged)

            await self._replace(_merge)
            logger.debug(
                "Liveness refreshed: enabled=%s online=%s",
                self._snapshot.worker_enabled,
                self._snapshot.is_online,
            )
            return self._snapshot

    def _to_error_info(self, exc: Exception) -> ErrorInfo:
        if isinstance(exc, SessionError):
            return TransientReadFailure(f"{exc.kind}: {exc.message}").to_info()
        return TransientReadFailure(str(exc) or type(exc).__name__).to_info()

    async def _record_failure(self, exc: Exception, generation: int) -> LivenessSnapshot:
        logger.warning("Liveness refresh failed: %s", exc)
        if generation != self._generation:
            return self._snapshot
        info = self._to_error_info(exc)
        await self._replace(lambda current: current.model_copy(update={"last_error": info}))
        return self._snapshot

    # ---- Event handlers ----

    async def _on_result(self, result: SentimentResult) -> None:
        observed = self._clock()
        self._last_live_at = observed
        logger.debug("Worker result observed for request %d", result.request_id)
        await self._replace(
            lambda current: current.model_copy(
                update={
                    "is_online": True,
                    "last_activity_at": observed,
                    "processed_count": current.processed_count + 1,
                }
            )
        )

    def _on_worker_registered(self, registration: WorkerRegistration) -> None:
        logger.info(
            "Worker registered: app=%s worker=%s, refreshing",
            registration.app_id,
            registration.worker_address,
        )
        task = asyncio.create_task(self.refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
