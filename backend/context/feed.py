"""
Household context feed.

While a session is connected, watches the household's inventory and
shopping list and proposes context updates to the orchestrator. The feed
never decides whether an update is sent: throttling and session status
are enforced by the reducer when it receives ContextProposed.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Callable, Coroutine

from context.builders import (
    build_cart_update,
    build_dynamic_variables,
    build_initial_context,
    build_inventory_update,
    fetch_household_snapshot,
    fetch_pending_cart,
)
from orchestrator.enums.context_kind import ContextKind
from orchestrator.events import ContextProposed, EventType
from orchestrator.runtime_context import (
    ChangeFeed,
    EventSink,
    HouseholdStore,
    RowChange,
    Unsubscribe,
)

from observability.logger import log_event, now_ms
from constants import RECENT_HISTORY_LIMIT


class ContextFeed:
    def __init__(  # pylint: disable=too-many-arguments
        self,
        store: HouseholdStore,
        change_feed: ChangeFeed,
        *,
        user_id: str,
        household_id: str,
        today: Callable[[], date] = date.today,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._changes = change_feed
        self._user_id = user_id
        self._household_id = household_id
        self._today = today
        self._clock_ms = clock_ms

        self._session_id: str | None = None
        self._emit: EventSink | None = None
        self._unsubscribes: list[Unsubscribe] = []
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> bool:
        return self._emit is not None

    async def dynamic_variables(self) -> dict[str, str]:
        snapshot = await fetch_household_snapshot(
            self._store, user_id=self._user_id, household_id=self._household_id
        )
        recent = await self._store.recent_messages(RECENT_HISTORY_LIMIT)
        return build_dynamic_variables(snapshot, recent)

    def start(self, session_id: str, emit_event: EventSink) -> None:
        """Subscribe for `session_id` and propose the initial snapshot."""
        self.stop()
        self._session_id = session_id
        self._emit = emit_event

        where = {"household_id": self._household_id}
        self._unsubscribes = [
            self._changes.subscribe("inventory", where, self._on_inventory_change),
            self._changes.subscribe("shopping_list", where, self._on_cart_change),
        ]
        self._spawn(self._propose_initial())

    def stop(self) -> None:
        """Idempotent. Pending proposals are cancelled."""
        unsubscribes, self._unsubscribes = self._unsubscribes, []
        for unsubscribe in unsubscribes:
            try:
                unsubscribe()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log_failure("unsubscribe", exc)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._emit = None
        self._session_id = None

    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _propose(self, kind: ContextKind, text: str) -> None:
        emit = self._emit
        if emit is None or not text:
            return
        await emit(
            ContextProposed(
                event_type=EventType.CONTEXT_PROPOSED,
                ts_ms=self._clock_ms(),
                kind=kind,
                text=text,
            )
        )

    async def _propose_initial(self) -> None:
        try:
            snapshot = await fetch_household_snapshot(
                self._store, user_id=self._user_id, household_id=self._household_id
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("initial_snapshot", exc)
            return
        await self._propose(ContextKind.INITIAL, build_initial_context(snapshot, self._today()))

    def _on_inventory_change(self, change: RowChange) -> None:
        item = change.new if change.new is not None else (change.old or {})
        text = build_inventory_update(change.change_type, item)
        self._spawn(self._propose(ContextKind.INVENTORY_DELTA, text))

    def _on_cart_change(self, change: RowChange) -> None:  # pylint: disable=unused-argument
        self._spawn(self._propose_cart())

    async def _propose_cart(self) -> None:
        try:
            items = await fetch_pending_cart(self._store, self._household_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_failure("cart_refetch", exc)
            return
        await self._propose(ContextKind.CART_SNAPSHOT, build_cart_update(items))

    def _log_failure(self, stage: str, exc: BaseException) -> None:
        log_event({
            "ts_ms": self._clock_ms(),
            "event_type": "context_feed_failed",
            "level": "warning",
            "stage": stage,
            "session_id": self._session_id,
            "error": repr(exc),
        })
