"""Interface the blog layer needs from a Matrix client."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from matrix_blog.matrix.models import (
    CreateRoomRequest,
    RoomEvent,
    SpaceSummaryRequest,
    SpaceSummaryResponse,
)
from matrix_blog.matrix.state import StateSnapshot


@runtime_checkable
class MatrixAPI(Protocol):
    """Room, state, message and directory operations against a homeserver.

    ``MatrixClient`` implements this over HTTP; tests substitute an
    in-memory fake.
    """

    def get_server_name(self) -> str: ...

    async def create_room(self, request: CreateRoomRequest) -> str: ...

    async def get_state_events(self, room_id: str) -> StateSnapshot: ...

    async def get_state_event(
        self, room_id: str, event_type: str, state_key: str = ""
    ) -> dict[str, Any]: ...

    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str: ...

    async def send_message_event(
        self, room_id: str, event_type: str, content: dict[str, Any]
    ) -> str: ...

    async def get_event(self, room_id: str, event_id: str) -> RoomEvent: ...

    async def redact_event(
        self, room_id: str, event_id: str, reason: str | None = None
    ) -> str: ...

    async def leave_room(self, room_id: str) -> None: ...

    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None: ...

    async def add_room_alias(self, alias: str, room_id: str) -> None: ...

    async def remove_room_alias(self, alias: str) -> None: ...

    async def get_current_user(self) -> str: ...

    async def get_space_summary(
        self, room_id: str, request: SpaceSummaryRequest | None = None
    ) -> SpaceSummaryResponse: ...
