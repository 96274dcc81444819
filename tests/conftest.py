"""Shared fixtures: an in-memory homeserver implementing MatrixAPI."""

import asyncio
import copy
import os
from collections import Counter
from typing import Any

import pytest

from matrix_blog.matrix.client import MatrixError
from matrix_blog.matrix.models import (
    CreateRoomRequest,
    RoomEvent,
    SpaceSummaryRequest,
    SpaceSummaryResponse,
)
from matrix_blog.matrix.state import StateSnapshot

# Rich injects ANSI codes when FORCE_COLOR is set, which breaks CLI
# output assertions.
os.environ.pop("FORCE_COLOR", None)
os.environ["NO_COLOR"] = "1"

SERVER = "s"
ME = "@me:s"


class FakeMatrix:
    """Minimal homeserver that keeps rooms, state and aliases in memory.

    Every call is recorded in ``calls`` as ``(method, args, result)``.
    Setting ``fail[method] = exc`` makes that method raise ``exc``.
    Setting ``delay[method] = seconds`` makes it sleep first, and ``peak``
    records how many calls to it were in flight at once.
    """

    def __init__(self) -> None:
        self.rooms: dict[str, dict[str, Any]] = {}
        self.aliases: dict[str, str] = {}
        self.calls: list[tuple[str, tuple[Any, ...], Any]] = []
        self.fail: dict[str, Exception] = {}
        self.delay: dict[str, float] = {}
        self.in_flight: Counter[str] = Counter()
        self.peak: Counter[str] = Counter()
        self._counter = 0

    # ── Test helpers ─────────────────────────────────────────────

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _enter(self, method: str) -> None:
        if method in self.fail:
            raise self.fail[method]
        if method not in self.delay:
            return
        self.in_flight[method] += 1
        self.peak[method] = max(self.peak[method], self.in_flight[method])
        try:
            await asyncio.sleep(self.delay[method])
        finally:
            self.in_flight[method] -= 1

    def _record(self, method: str, args: tuple[Any, ...], result: Any = None) -> Any:
        self.calls.append((method, args, result))
        return result

    def call_names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args, _ in self.calls if name == method]

    def _room(self, room_id: str) -> dict[str, Any]:
        if room_id not in self.rooms:
            raise MatrixError(403, "M_FORBIDDEN", "You are not in this room")
        return self.rooms[room_id]

    def _put_state(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any], sender: str = ME
    ) -> str:
        event_id = f"$e{self._next()}"
        event = {
            "type": event_type,
            "state_key": state_key,
            "content": copy.deepcopy(content),
            "event_id": event_id,
            "sender": sender,
            "origin_server_ts": 1000 * self._counter,
            "room_id": room_id,
        }
        room = self.rooms.setdefault(room_id, {"state": {}, "events": {}})
        room["state"][(event_type, state_key)] = event
        room["events"][event_id] = event
        return event_id

    def add_room(
        self,
        room_id: str,
        *,
        space: bool = False,
        create: bool = True,
        name: str | None = None,
        topic: str | None = None,
        alias: str | None = None,
    ) -> str:
        """Seed a room directly, bypassing the recorded API."""
        self.rooms[room_id] = {"state": {}, "events": {}}
        if create:
            content: dict[str, Any] = {"creator": ME}
            if space:
                content["org.matrix.msc1772.type"] = "org.matrix.msc1772.space"
            self._put_state(room_id, "m.room.create", "", content)
        self._put_state(room_id, "m.room.member", ME, {"membership": "join"})
        if name is not None:
            self._put_state(room_id, "m.room.name", "", {"name": name})
        if topic is not None:
            self._put_state(room_id, "m.room.topic", "", {"topic": topic})
        if alias is not None:
            self.aliases[alias] = room_id
            self._put_state(room_id, "m.room.canonical_alias", "", {"alias": alias})
        return room_id

    def add_member(self, room_id: str, user_id: str, membership: str = "join") -> None:
        self._put_state(room_id, "m.room.member", user_id, {"membership": membership}, sender=user_id)

    def add_message(self, room_id: str, event_id: str, content: dict[str, Any], ts: int = 5000) -> None:
        self.rooms[room_id]["events"][event_id] = {
            "type": "m.room.message",
            "event_id": event_id,
            "sender": ME,
            "origin_server_ts": ts,
            "room_id": room_id,
            "content": content,
        }

    def state_event_id(self, room_id: str, event_type: str, state_key: str = "") -> str:
        return self.rooms[room_id]["state"][(event_type, state_key)]["event_id"]

    def state_content(self, room_id: str, event_type: str, state_key: str = "") -> dict[str, Any] | None:
        room = self.rooms.get(room_id)
        event = room["state"].get((event_type, state_key)) if room else None
        return None if event is None else event["content"]

    def event(self, room_id: str, event_id: str) -> dict[str, Any]:
        return self.rooms[room_id]["events"][event_id]

    # ── MatrixAPI ────────────────────────────────────────────────

    def get_server_name(self) -> str:
        return SERVER

    async def create_room(self, request: CreateRoomRequest) -> str:
        await self._enter("create_room")
        room_id = f"!r{self._next()}:{SERVER}"
        self.rooms[room_id] = {"state": {}, "events": {}}
        self._put_state(room_id, "m.room.create", "", {"creator": ME})
        self._put_state(room_id, "m.room.member", ME, {"membership": "join"})
        if request.name is not None:
            self._put_state(room_id, "m.room.name", "", {"name": request.name})
        if request.topic is not None:
            self._put_state(room_id, "m.room.topic", "", {"topic": request.topic})
        for event in request.initial_state or []:
            self._put_state(room_id, event.type, event.state_key, event.content)
        if request.room_alias_name:
            alias = f"#{request.room_alias_name}:{SERVER}"
            self.aliases[alias] = room_id
            self._put_state(room_id, "m.room.canonical_alias", "", {"alias": alias})
        return self._record("create_room", (request,), room_id)

    async def get_state_events(self, room_id: str) -> StateSnapshot:
        await self._enter("get_state_events")
        room = self._room(room_id)
        snapshot = StateSnapshot.from_raw([copy.deepcopy(e) for e in room["state"].values()])
        return self._record("get_state_events", (room_id,), snapshot)

    async def get_state_event(self, room_id: str, event_type: str, state_key: str = "") -> dict[str, Any]:
        await self._enter("get_state_event")
        event = self._room(room_id)["state"].get((event_type, state_key))
        if event is None:
            raise MatrixError(404, "M_NOT_FOUND", "Event not found.")
        return self._record(
            "get_state_event", (room_id, event_type, state_key), copy.deepcopy(event["content"])
        )

    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str:
        await self._enter("send_state_event")
        self._room(room_id)
        event_id = self._put_state(room_id, event_type, state_key, content)
        return self._record("send_state_event", (room_id, event_type, state_key, content), event_id)

    async def send_message_event(self, room_id: str, event_type: str, content: dict[str, Any]) -> str:
        await self._enter("send_message_event")
        room = self._room(room_id)
        event_id = f"$m{self._next()}"
        ts = 1000 * self._counter
        room["events"][event_id] = {
            "type": event_type,
            "event_id": event_id,
            "sender": ME,
            "origin_server_ts": ts,
            "room_id": room_id,
            "content": copy.deepcopy(content),
        }
        relation = content.get("m.relates_to") or {}
        if relation.get("rel_type") == "m.replace":
            original = room["events"][relation["event_id"]]
            original.setdefault("unsigned", {}).setdefault("m.relations", {})["m.replace"] = {
                "event_id": event_id,
                "origin_server_ts": ts,
                "sender": ME,
            }
        return self._record("send_message_event", (room_id, event_type, content), event_id)

    async def get_event(self, room_id: str, event_id: str) -> RoomEvent:
        await self._enter("get_event")
        event = self._room(room_id)["events"].get(event_id)
        if event is None:
            raise MatrixError(404, "M_NOT_FOUND", "Event not found.")
        return self._record("get_event", (room_id, event_id), RoomEvent.model_validate(copy.deepcopy(event)))

    async def redact_event(self, room_id: str, event_id: str, reason: str | None = None) -> str:
        await self._enter("redact_event")
        room = self._room(room_id)
        room["events"][event_id]["content"] = {}
        redaction_id = f"$x{self._next()}"
        return self._record("redact_event", (room_id, event_id, reason), redaction_id)

    async def leave_room(self, room_id: str) -> None:
        await self._enter("leave_room")
        self._room(room_id)
        self._put_state(room_id, "m.room.member", ME, {"membership": "leave"})
        self._record("leave_room", (room_id,))

    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        await self._enter("kick_user")
        self._room(room_id)
        self._put_state(room_id, "m.room.member", user_id, {"membership": "leave"})
        self._record("kick_user", (room_id, user_id, reason))

    async def add_room_alias(self, alias: str, room_id: str) -> None:
        await self._enter("add_room_alias")
        if alias in self.aliases:
            raise MatrixError(409, "M_UNKNOWN", "Room alias already exists")
        self.aliases[alias] = room_id
        self._record("add_room_alias", (alias, room_id))

    async def remove_room_alias(self, alias: str) -> None:
        await self._enter("remove_room_alias")
        if alias not in self.aliases:
            raise MatrixError(404, "M_NOT_FOUND", "Room alias not found")
        del self.aliases[alias]
        self._record("remove_room_alias", (alias,))

    async def get_current_user(self) -> str:
        await self._enter("get_current_user")
        return self._record("get_current_user", (), ME)

    async def get_space_summary(
        self, room_id: str, request: SpaceSummaryRequest | None = None
    ) -> SpaceSummaryResponse:
        await self._enter("get_space_summary")
        rooms = []
        if room_id in self.rooms:
            rooms.append(self._chunk(room_id))
            for (event_type, state_key), event in self.rooms[room_id]["state"].items():
                if event_type == "org.matrix.msc1772.space.child" and event["content"]:
                    rooms.append(self._chunk(state_key))
        response = SpaceSummaryResponse.model_validate({"rooms": rooms})
        return self._record("get_space_summary", (room_id,), response)

    def _chunk(self, room_id: str) -> dict[str, Any]:
        chunk: dict[str, Any] = {"room_id": room_id}
        for field, event_type, key in (
            ("name", "m.room.name", "name"),
            ("topic", "m.room.topic", "topic"),
            ("canonical_alias", "m.room.canonical_alias", "alias"),
        ):
            content = self.state_content(room_id, event_type) or {}
            if content.get(key):
                chunk[field] = content[key]
        return chunk

    async def __aenter__(self) -> "FakeMatrix":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


@pytest.fixture
def matrix() -> FakeMatrix:
    """An empty in-memory homeserver."""
    return FakeMatrix()
