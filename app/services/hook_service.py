# app/services/hook_service.py
"""
Post-arrival hooks — payment capture and door unlock.
Runs after the arrival event is committed; a failing hook is logged and never undoes
the arrival. Each successful hook flips its ancillary flag on the event row.
Register real integrations with ArrivalHooks.register(...).
"""

import inspect
from typing import Awaitable, Callable, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.occupancy_event import OccupancyEvent
from app.utils.logger import get_logger

logger = get_logger(__name__)

# hooks receive the OccupancyEventOut snapshot, not the ORM row
Hook = Callable[[object], Union[bool, Awaitable[bool]]]

# hook name → event column it confirms
HOOK_FLAGS = {
    "capture_payment": "payment_captured",
    "open_door": "door_opened",
}


class ArrivalHooks:
    def __init__(self):
        self._hooks: dict[str, Hook] = {}

    def register(self, name: str, hook: Hook):
        if name not in HOOK_FLAGS:
            raise ValueError(f"Unknown hook '{name}' (expected one of {sorted(HOOK_FLAGS)})")
        self._hooks[name] = hook

    def clear(self):
        self._hooks.clear()

    async def run(self, event, session_factory: Callable[[], Session]) -> dict:
        """Run every registered hook once. Returns {hook_name: succeeded and recorded}."""
        results = {}
        for name, hook in self._hooks.items():
            try:
                outcome = hook(event)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                results[name] = bool(outcome)
            except Exception as e:
                logger.error(f"[HOOK] {name} failed for event {event.id}: {e}", exc_info=True)
                results[name] = False
                continue

            if results[name]:
                results[name] = mark_ancillary(session_factory, event.id, HOOK_FLAGS[name])
        return results


def mark_ancillary(session_factory: Callable[[], Session], event_id: str, flag: str) -> bool:
    """
    Set one ancillary boolean. The only mutation an occupancy event ever sees.
    Returns False (after logging) if the write fails; the arrival itself stands.
    """
    if flag not in HOOK_FLAGS.values():
        raise ValueError(f"Not an ancillary flag: {flag}")
    db = session_factory()
    try:
        db.execute(
            update(OccupancyEvent)
            .where(OccupancyEvent.id == event_id)
            .values({flag: True})
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[HOOK] Could not record {flag} for event {event_id}: {e}", exc_info=True)
        return False
    finally:
        db.close()
    logger.info(f"[HOOK] event {event_id}: {flag}=true")
    return True


# Process-wide registry; integrations register here at startup
arrival_hooks = ArrivalHooks()

