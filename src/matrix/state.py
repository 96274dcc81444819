"""Indexed view over a room's current state.

The homeserver returns room state as an unordered list holding one event
per ``(type, state_key)``. ``StateSnapshot`` parses that list once and keeps
a lookup map so callers never scan it repeatedly.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import TypeAdapter

from matrix_blog.matrix.models import AnyStateEvent, PersistedStateEvent


_adapter: TypeAdapter[list[AnyStateEvent]] = TypeAdapter(list[AnyStateEvent])


class StateSnapshot:
    """Current state of one room, keyed by ``(type, state_key)``."""

    def __init__(self, events: Iterable[PersistedStateEvent]) -> None:
        self._events: dict[tuple[str, str], PersistedStateEvent] = {}
        for event in events:
            self._events[(event.type, event.state_key)] = event

    @classmethod
    def from_raw(cls, raw: list[dict[str, Any]]) -> StateSnapshot:
        """Parse the JSON list returned by ``GET /rooms/{id}/state``."""
        return cls(_adapter.validate_python(raw))

    def __iter__(self) -> Iterator[PersistedStateEvent]:
        return iter(self._events.values())

    def __len__(self) -> int:
        return len(self._events)

    def get(self, event_type: str, state_key: str = "") -> PersistedStateEvent | None:
        """Return the event at ``(event_type, state_key)``, or None."""
        return self._events.get((event_type, state_key))

    def find(self, event_type: str) -> PersistedStateEvent | None:
        """Return the first event of ``event_type`` regardless of state key."""
        for (kind, _), event in self._events.items():
            if kind == event_type:
                return event
        return None

    def of_type(self, event_type: str) -> list[PersistedStateEvent]:
        """Return every event of ``event_type``."""
        return [event for (kind, _), event in self._events.items() if kind == event_type]
