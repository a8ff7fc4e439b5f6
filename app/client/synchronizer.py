# app/client/synchronizer.py
"""
Offline synchronizer — replays check-in / check-out requests made without signal.

Queued events are sent one at a time, oldest first, and a flush pass never runs
concurrently with another, so an arrival always reaches the server before the
departure queued after it.

Outcome handling per event:
  success                       → removed
  StateConflict that is our own
  earlier success being replayed → removed (counted as duplicate)
  any other conflict / terminal  → removed, reported to the caller
  retry-eligible failure        → kept, attempt counted, pass stops here
  too many attempts             → dropped, reported

"Our own earlier success": for an arrival, the existing event was made with the
same credential id we are replaying. For a departure, the same credential id if we
sent one, otherwise the same subject id. Anything else is someone else's check-in.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from app.client.api_client import CheckinApiClient
from app.client.local_store import LocalStore, PendingEvent
from app.config import settings
from app.errors import (
    CheckinError, ConflictReason, InsufficientEvidence, StateConflict, StorageFailure,
    TransientFailure, ValidationError,
)
from app.models.enums import Phase
from app.services import token_codec
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Evidence can still be uploading when a queued departure replays
RETRY_ELIGIBLE = (TransientFailure, StorageFailure, InsufficientEvidence)


@dataclass
class FlushReport:
    synced: int = 0
    duplicates: int = 0
    failures: list = field(default_factory=list)    # [(PendingEvent, CheckinError)]
    dropped: list = field(default_factory=list)     # [PendingEvent]
    remaining: int = 0
    skipped: bool = False

    @property
    def clean(self) -> bool:
        return not self.skipped and self.remaining == 0


@dataclass
class SubmitResult:
    queued: bool
    response: Optional[dict] = None
    pending: Optional[PendingEvent] = None


def credential_id_of(wire: Optional[str]) -> Optional[str]:
    """Read the credential id from a wire form without verifying it."""
    if not wire:
        return None
    try:
        return token_codec.decode(wire).id
    except ValidationError:
        return None


class OfflineSynchronizer:
    def __init__(self, client: CheckinApiClient, store: LocalStore,
                 max_attempts: int = None, min_backoff: float = None, max_backoff: float = None):
        self.client = client
        self.store = store
        self.max_attempts = settings.SYNC_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.min_backoff = settings.SYNC_MIN_BACKOFF if min_backoff is None else min_backoff
        self.max_backoff = settings.SYNC_MAX_BACKOFF if max_backoff is None else max_backoff
        self._backoff = self.min_backoff
        self._flush_lock = asyncio.Lock()

    # ── Queueing ─────────────────────────────────────────────────────────

    def enqueue(self, kind: Phase, reservation_id: str, payload: dict) -> PendingEvent:
        event = PendingEvent(kind=Phase(kind), reservation_id=reservation_id, payload=dict(payload))
        self.store.append(event)
        logger.info(f"[SYNC] Queued {event.kind.value} for res={reservation_id} ({event.id})")
        return event

    def pending(self) -> list:
        return self.store.pending()

    async def _enqueue(self, kind: Phase, reservation_id: str, payload: dict) -> PendingEvent:
        # file writes are fsynced; keep them off the event loop
        return await asyncio.to_thread(self.enqueue, kind, reservation_id, payload)

    async def submit(self, kind: Phase, reservation_id: str, payload: dict) -> SubmitResult:
        """
        Try the server directly; queue instead if it cannot be reached.
        Anything already queued goes first, so this call queues behind it.
        Terminal errors from the direct attempt are raised to the caller.
        """
        if await asyncio.to_thread(self.store.pending):
            return SubmitResult(queued=True, pending=await self._enqueue(kind, reservation_id, payload))

        event = PendingEvent(kind=Phase(kind), reservation_id=reservation_id, payload=dict(payload))
        try:
            response = await self._send(event)
        except RETRY_ELIGIBLE as e:
            logger.info(f"[SYNC] Direct {event.kind.value} failed ({e.kind.value}), queueing")
            return SubmitResult(queued=True, pending=await self._enqueue(kind, reservation_id, payload))
        return SubmitResult(queued=False, response=response)

    # ── Replay ───────────────────────────────────────────────────────────

    async def _send(self, event: PendingEvent) -> dict:
        if event.kind is Phase.ARRIVAL:
            return await self.client.arrive(event.reservation_id, event.payload.get("credential"))
        return await self.client.depart(event.reservation_id,
                                        event.payload.get("credential"),
                                        subject_id=event.payload.get("subject_id"))

    def is_own_duplicate(self, event: PendingEvent, conflict: StateConflict) -> bool:
        expected = {
            Phase.ARRIVAL: ConflictReason.ALREADY_ARRIVED,
            Phase.DEPARTURE: ConflictReason.ALREADY_DEPARTED,
        }[event.kind]
        if conflict.reason is not expected:
            return False

        ours = credential_id_of(event.payload.get("credential"))
        if ours is not None:
            return ours == conflict.existing_credential_id
        subject_id = event.payload.get("subject_id")
        return (event.kind is Phase.DEPARTURE and subject_id is not None
                and subject_id == conflict.existing_subject_id)

    async def flush(self) -> FlushReport:
        if self._flush_lock.locked():
            logger.debug("[SYNC] Flush already running, skipped")
            return FlushReport(skipped=True, remaining=len(await asyncio.to_thread(self.store.pending)))

        async with self._flush_lock:
            report = FlushReport()
            stalled = False
            for event in await asyncio.to_thread(self.store.pending):
                try:
                    await self._send(event)
                except StateConflict as c:
                    await asyncio.to_thread(self.store.remove, event.id)
                    if self.is_own_duplicate(event, c):
                        logger.info(f"[SYNC] {event.kind.value} res={event.reservation_id} already synced")
                        report.duplicates += 1
                    else:
                        logger.warning(f"[SYNC] {event.kind.value} res={event.reservation_id} "
                                       f"conflict: {c.reason.value}")
                        report.failures.append((event, c))
                    continue
                except RETRY_ELIGIBLE as e:
                    event.attempts += 1
                    event.last_error = e.kind.value
                    if event.attempts >= self.max_attempts:
                        await asyncio.to_thread(self.store.remove, event.id)
                        logger.warning(f"[SYNC] Dropping {event.kind.value} res={event.reservation_id} "
                                       f"after {event.attempts} attempts ({e.kind.value})")
                        report.dropped.append(event)
                        continue
                    await asyncio.to_thread(self.store.update, event)
                    logger.info(f"[SYNC] {event.kind.value} res={event.reservation_id} will retry "
                                f"({event.attempts}/{self.max_attempts}, {e.kind.value})")
                    stalled = True
                    break
                except CheckinError as e:
                    await asyncio.to_thread(self.store.remove, event.id)
                    logger.warning(f"[SYNC] {event.kind.value} res={event.reservation_id} "
                                   f"rejected: {e.kind.value}")
                    report.failures.append((event, e))
                    continue

                await asyncio.to_thread(self.store.remove, event.id)
                report.synced += 1
                logger.info(f"[SYNC] {event.kind.value} res={event.reservation_id} synced")

            report.remaining = len(await asyncio.to_thread(self.store.pending))
            if stalled:
                self._backoff = min(self._backoff * 2, self.max_backoff)
            else:
                self._backoff = self.min_backoff
            return report

    def next_delay(self) -> float:
        """Seconds to wait before the next pass; doubles while passes keep stalling."""
        return self._backoff

    async def run_forever(self, is_online: Callable[[], Union[bool, Awaitable[bool]]],
                          stop: Optional[asyncio.Event] = None):
        """Device loop: flush whenever online and something is queued."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            online = is_online()
            if inspect.isawaitable(online):
                online = await online
            if online and await asyncio.to_thread(self.store.pending):
                report = await self.flush()
                if report.failures or report.dropped:
                    logger.warning(f"[SYNC] Pass finished with {len(report.failures)} failures, "
                                   f"{len(report.dropped)} dropped")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.next_delay())
            except asyncio.TimeoutError:
                pass

    # ── Convenience ──────────────────────────────────────────────────────

    @staticmethod
    def precheck(wire: str, reservation_id: str) -> bool:
        """
        Local sanity check before scanning through: is this QR for this reservation?
        Saves a round trip on an obviously wrong code; the server still decides.
        """
        try:
            return token_codec.decode(wire).reservation_id == reservation_id
        except ValidationError:
            return False

    def cache_credential(self, reservation_id: str, wire: str):
        self.store.cache_credential(reservation_id, wire)

    def cached_credential(self, reservation_id: str) -> Optional[str]:
        return self.store.cached_credential(reservation_id)
