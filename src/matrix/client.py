"""Matrix client-server API integration: config and async client.

Only the endpoints the blog layer needs are wrapped. Each call raises
``MatrixError`` on a non-2xx response so callers can inspect the status.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Any
from urllib.parse import quote, urlparse

import httpx
from pydantic import BaseModel

from matrix_blog import __version__
from matrix_blog.matrix.models import (
    CreateRoomRequest,
    RoomEvent,
    SpaceSummaryRequest,
    SpaceSummaryResponse,
)
from matrix_blog.matrix.state import StateSnapshot

logger = logging.getLogger(__name__)

CLIENT_PREFIX = "/_matrix/client/r0"
SPACE_SUMMARY_PREFIX = "/_matrix/client/unstable/org.matrix.msc2946"
USER_AGENT = f"matrix-blog/{__version__}"


class MatrixConfig(BaseModel):
    """Connection settings for a Matrix homeserver."""

    homeserver_url: str = ""
    access_token: str = ""
    server_name: str = ""
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.homeserver_url and self.access_token)

    @classmethod
    def from_env(cls) -> MatrixConfig:
        """Create config from environment variables."""
        return cls(
            homeserver_url=os.environ.get("MATRIX_HOMESERVER_URL", ""),
            access_token=os.environ.get("MATRIX_ACCESS_TOKEN", ""),
            server_name=os.environ.get("MATRIX_SERVER_NAME", ""),
        )


class MatrixError(Exception):
    """A non-2xx response from the homeserver."""

    def __init__(self, status: int, errcode: str, error: str = "") -> None:
        self.status = status
        self.errcode = errcode
        self.error = error
        details = json.dumps({"errcode": errcode, "error": error})
        super().__init__(f"Matrix Error: {status} {details}")

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @classmethod
    def from_response(cls, response: httpx.Response) -> MatrixError:
        try:
            body = response.json()
        except ValueError:
            return cls(response.status_code, "M_UNKNOWN", response.text)
        if not isinstance(body, dict):
            return cls(response.status_code, "M_UNKNOWN", response.text)
        return cls(
            response.status_code,
            body.get("errcode", "M_UNKNOWN"),
            body.get("error", ""),
        )


def _segment(value: str) -> str:
    """Percent-encode a single URL path segment."""
    return quote(value, safe="")


def _new_txn_id() -> str:
    return uuid.uuid4().hex


class MatrixClient:
    """Async client for the Matrix client-server API.

    Authenticates with a bearer access token. The underlying
    ``httpx.AsyncClient`` is created on demand unless one is passed in,
    in which case the caller owns its lifecycle.
    """

    def __init__(
        self,
        config: MatrixConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.homeserver_url:
            raise ValueError("Matrix not configured (set MATRIX_HOMESERVER_URL)")
        self.config = config
        self.base_url = config.homeserver_url.rstrip("/")
        self._access_token = config.access_token
        self._http = http_client
        self._owns_http = http_client is None

    async def __aenter__(self) -> MatrixClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def set_access_token(self, token: str) -> None:
        self._access_token = token

    def get_server_name(self) -> str:
        """Server name used in aliases and ``via`` routing hints."""
        if self.config.server_name:
            return self.config.server_name
        return urlparse(self.base_url).hostname or ""

    # ── Transport ────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request to the homeserver and return the decoded JSON body."""
        headers = {"User-Agent": USER_AGENT}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        logger.debug("%s %s", method, endpoint)
        response = await self._client().request(
            method,
            f"{self.base_url}{endpoint}",
            json=body,
            headers=headers,
        )
        if not response.is_success:
            raise MatrixError.from_response(response)
        return response.json()

    @staticmethod
    def _room(room_id: str) -> str:
        return f"{CLIENT_PREFIX}/rooms/{_segment(room_id)}"

    # ── Rooms ────────────────────────────────────────────────────

    async def create_room(self, request: CreateRoomRequest) -> str:
        """Create a room and return its ID."""
        data = await self._request(
            "POST",
            f"{CLIENT_PREFIX}/createRoom",
            request.model_dump(exclude_none=True),
        )
        return data["room_id"]

    async def leave_room(self, room_id: str) -> None:
        await self._request("POST", f"{self._room(room_id)}/leave", {})

    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        body: dict[str, Any] = {"user_id": user_id}
        if reason:
            body["reason"] = reason
        await self._request("POST", f"{self._room(room_id)}/kick", body)

    # ── State ────────────────────────────────────────────────────

    async def get_state_events(self, room_id: str) -> StateSnapshot:
        """Fetch the full current state of a room."""
        data = await self._request("GET", f"{self._room(room_id)}/state")
        return StateSnapshot.from_raw(data)

    async def get_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str = "",
    ) -> dict[str, Any]:
        """Fetch the content of a single state event.

        Raises:
            MatrixError: With status 404 when the event does not exist.
        """
        endpoint = f"{self._room(room_id)}/state/{_segment(event_type)}"
        if state_key:
            endpoint += f"/{_segment(state_key)}"
        return await self._request("GET", endpoint)

    async def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: dict[str, Any],
    ) -> str:
        """Write a state event and return its event ID."""
        endpoint = f"{self._room(room_id)}/state/{_segment(event_type)}/{_segment(state_key)}"
        data = await self._request("PUT", endpoint, content)
        return data["event_id"]

    # ── Timeline ─────────────────────────────────────────────────

    async def send_message_event(
        self,
        room_id: str,
        event_type: str,
        content: dict[str, Any],
    ) -> str:
        """Send a message event and return its event ID.

        A fresh transaction ID is generated per call.
        """
        endpoint = f"{self._room(room_id)}/send/{_segment(event_type)}/{_new_txn_id()}"
        data = await self._request("PUT", endpoint, content)
        return data["event_id"]

    async def get_event(self, room_id: str, event_id: str) -> RoomEvent:
        data = await self._request("GET", f"{self._room(room_id)}/event/{_segment(event_id)}")
        return RoomEvent.model_validate(data)

    async def redact_event(self, room_id: str, event_id: str, reason: str | None = None) -> str:
        """Redact an event and return the redaction's event ID."""
        endpoint = f"{self._room(room_id)}/redact/{_segment(event_id)}/{_new_txn_id()}"
        body: dict[str, Any] = {}
        if reason:
            body["reason"] = reason
        data = await self._request("PUT", endpoint, body)
        return data["event_id"]

    # ── Directory ────────────────────────────────────────────────

    async def add_room_alias(self, alias: str, room_id: str) -> None:
        await self._request(
            "PUT",
            f"{CLIENT_PREFIX}/directory/room/{_segment(alias)}",
            {"room_id": room_id},
        )

    async def remove_room_alias(self, alias: str) -> None:
        await self._request("DELETE", f"{CLIENT_PREFIX}/directory/room/{_segment(alias)}")

    # ── Account and spaces ───────────────────────────────────────

    async def get_current_user(self) -> str:
        data = await self._request("GET", f"{CLIENT_PREFIX}/account/whoami")
        return data["user_id"]

    async def get_space_summary(
        self,
        room_id: str,
        request: SpaceSummaryRequest | None = None,
    ) -> SpaceSummaryResponse:
        """Fetch a space room and its direct children."""
        body = request.model_dump(exclude_none=True) if request else {}
        data = await self._request(
            "POST",
            f"{SPACE_SUMMARY_PREFIX}/rooms/{_segment(room_id)}/spaces",
            body,
        )
        return SpaceSummaryResponse.model_validate(data)


def create_matrix_client(
    homeserver_url: str,
    access_token: str = "",
    server_name: str = "",
) -> MatrixClient:
    """Build a client that manages its own HTTP connection pool."""
    return MatrixClient(
        MatrixConfig(
            homeserver_url=homeserver_url,
            access_token=access_token,
            server_name=server_name,
        )
    )
