"""
In-memory household store and change feed.

Reference implementations of the HouseholdStore and ChangeFeed protocols,
used by tests and by the dev server. Rows are plain dicts keyed by "id".
Every write is published to the attached change feed, the way a
database's realtime channel reports row changes.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from orchestrator.runtime_context import ChangeCallback, PersistenceError, Unsubscribe

from observability.logger import log_event, now_ms


@dataclass(frozen=True)
class RowChange:
    table: str
    change_type: str  # INSERT | UPDATE | DELETE
    new: Mapping[str, Any] | None = None
    old: Mapping[str, Any] | None = None

    @property
    def row(self) -> Mapping[str, Any]:
        return self.new if self.new is not None else (self.old or {})


def _matches(row: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    if not where:
        return True
    return all(row.get(k) == v for k, v in where.items())


class InMemoryChangeFeed:
    def __init__(self) -> None:
        self._subs: dict[int, tuple[str, dict[str, Any], ChangeCallback]] = {}
        self._next_id = 0

    def subscribe(
        self,
        table: str,
        filter: Mapping[str, Any],  # pylint: disable=redefined-builtin
        on_change: ChangeCallback,
    ) -> Unsubscribe:
        sub_id = self._next_id
        self._next_id += 1
        self._subs[sub_id] = (table, dict(filter), on_change)

        def _unsubscribe() -> None:
            self._subs.pop(sub_id, None)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, change: RowChange) -> None:
        for table, where, on_change in list(self._subs.values()):
            if table != change.table or not _matches(change.row, where):
                continue
            try:
                on_change(change)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "change_feed_callback_failed",
                    "level": "warning",
                    "table": table,
                    "error": repr(exc),
                })


class InMemoryHouseholdStore:
    """
    Dict-of-tables store. Set `fail_writes` to make conversation writes
    raise PersistenceError.
    """

    def __init__(self, feed: InMemoryChangeFeed | None = None) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.feed = feed
        self.fail_writes = False
        self._seq = 0

    def _table(self, entity: str) -> dict[str, dict[str, Any]]:
        return self._tables.setdefault(entity, {})

    def _publish(self, change: RowChange) -> None:
        if self.feed is not None:
            self.feed.publish(change)

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # ------------------------------------------------------------------
    # Generic rows
    # ------------------------------------------------------------------

    async def read(self, entity: str, entity_id: str) -> dict[str, Any] | None:
        row = self._table(entity).get(entity_id)
        return copy.deepcopy(row) if row is not None else None

    async def insert(self, entity: str, row: Mapping[str, Any]) -> dict[str, Any]:
        stored = {**copy.deepcopy(dict(row)), "_seq": self._next_seq()}
        stored.setdefault("id", uuid.uuid4().hex)
        self._table(entity)[stored["id"]] = stored
        self._publish(RowChange(entity, "INSERT", new=copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def update(self, entity: str, entity_id: str, fields: Mapping[str, Any]) -> None:
        table = self._table(entity)
        old = table.get(entity_id)
        if old is None:
            new = {"id": entity_id, "_seq": self._next_seq(), **copy.deepcopy(dict(fields))}
            table[entity_id] = new
            self._publish(RowChange(entity, "INSERT", new=copy.deepcopy(new)))
            return
        new = {**old, **copy.deepcopy(dict(fields))}
        table[entity_id] = new
        self._publish(RowChange(entity, "UPDATE", new=copy.deepcopy(new), old=copy.deepcopy(old)))

    async def delete(self, entity: str, entity_id: str) -> None:
        old = self._table(entity).pop(entity_id, None)
        if old is not None:
            self._publish(RowChange(entity, "DELETE", old=copy.deepcopy(old)))

    async def select(
        self,
        entity: str,
        where: Mapping[str, Any] | None = None,
        *,
        name_contains: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = sorted(self._table(entity).values(), key=lambda r: r.get("_seq", 0))
        found = []
        needle = name_contains.lower() if name_contains else None
        for row in rows:
            if not _matches(row, where):
                continue
            if needle is not None and needle not in str(row.get("name", "")).lower():
                continue
            found.append(copy.deepcopy(row))
            if limit is not None and len(found) >= limit:
                break
        return found

    # ------------------------------------------------------------------
    # Conversation history
    # ------------------------------------------------------------------

    async def append_message(self, session_id: str, role: str, text: str) -> None:
        if self.fail_writes:
            raise PersistenceError("conversation_history write failed")
        await self.insert(
            "conversation_history",
            {"conversation_id": session_id, "role": role, "message": text, "created_at_ms": now_ms()},
        )

    async def log_event(
        self,
        session_id: str,
        event_type: str,
        data: Mapping[str, Any],
        role: str | None = None,
    ) -> None:
        if self.fail_writes:
            raise PersistenceError("conversation_events write failed")
        await self.insert(
            "conversation_events",
            {
                "conversation_id": session_id,
                "event_type": event_type,
                "event_data": dict(data),
                "role": role,
                "created_at_ms": now_ms(),
            },
        )

    async def recent_messages(self, limit: int) -> list[dict[str, Any]]:
        """Most recent `limit` messages, oldest first."""
        rows = await self.select("conversation_history")
        return rows[-limit:] if limit > 0 else []
