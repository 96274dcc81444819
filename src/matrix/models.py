"""Matrix event and request/response models as pure Pydantic v2 data types.

State events are parsed into a tagged union keyed on the event ``type``.
Only the event kinds the blog layer interprets get their own model; every
other state event falls back to ``GenericStateEvent`` with raw content.
Content models tolerate missing fields because redacted events keep their
type and state key but lose their content.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

# Event type strings
ROOM_CREATE = "m.room.create"
ROOM_NAME = "m.room.name"
ROOM_TOPIC = "m.room.topic"
ROOM_CANONICAL_ALIAS = "m.room.canonical_alias"
ROOM_MEMBER = "m.room.member"
ROOM_HISTORY_VISIBILITY = "m.room.history_visibility"
ROOM_MESSAGE = "m.room.message"

SPACE_TYPE_KEY = "org.matrix.msc1772.type"
SPACE_TYPE_VALUE = "org.matrix.msc1772.space"
SPACE_CHILD = "org.matrix.msc1772.space.child"
SPACE_PARENT = "org.matrix.msc1772.space.parent"

POST_CONTENT = "co.hirsz.blog.post_content"


class _Content(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ── State event content ──────────────────────────────────────────────


class CreateContent(_Content):
    creator: str | None = None
    room_type: str | None = Field(default=None, alias=SPACE_TYPE_KEY)

    @property
    def is_space(self) -> bool:
        return self.room_type == SPACE_TYPE_VALUE


class NameContent(_Content):
    name: str | None = None


class TopicContent(_Content):
    topic: str | None = None


class CanonicalAliasContent(_Content):
    alias: str | None = None
    alt_aliases: list[str] = Field(default_factory=list)


class MemberContent(_Content):
    membership: Literal["invite", "join", "knock", "leave", "ban"] | None = None
    displayname: str | None = None
    avatar_url: str | None = None
    is_direct: bool | None = None


class SpaceChildContent(_Content):
    via: list[str] = Field(default_factory=list)
    suggested: bool | None = None
    order: str | None = None


class SpaceParentContent(_Content):
    via: list[str] = Field(default_factory=list)
    canonical: bool | None = None


class PostContentPointer(_Content):
    """Points at the message event holding a post's original content."""

    event_id: str | None = None


# ── State events ─────────────────────────────────────────────────────


class StateEvent(BaseModel):
    """A state event as sent in ``initial_state`` or read back from a room."""

    type: str
    state_key: str = ""
    content: Any = None


class PersistedStateEvent(StateEvent):
    """A state event as stored by the homeserver."""

    event_id: str = ""
    sender: str = ""
    origin_server_ts: int = 0
    room_id: str = ""
    unsigned: dict[str, Any] | None = None


class GenericStateEvent(PersistedStateEvent):
    content: dict[str, Any] = Field(default_factory=dict)


class CreateEvent(PersistedStateEvent):
    type: Literal["m.room.create"]
    content: CreateContent = Field(default_factory=CreateContent)


class NameEvent(PersistedStateEvent):
    type: Literal["m.room.name"]
    content: NameContent = Field(default_factory=NameContent)


class TopicEvent(PersistedStateEvent):
    type: Literal["m.room.topic"]
    content: TopicContent = Field(default_factory=TopicContent)


class CanonicalAliasEvent(PersistedStateEvent):
    type: Literal["m.room.canonical_alias"]
    content: CanonicalAliasContent = Field(default_factory=CanonicalAliasContent)


class MemberEvent(PersistedStateEvent):
    type: Literal["m.room.member"]
    content: MemberContent = Field(default_factory=MemberContent)


class SpaceChildEvent(PersistedStateEvent):
    type: Literal["org.matrix.msc1772.space.child"]
    content: SpaceChildContent = Field(default_factory=SpaceChildContent)


class SpaceParentEvent(PersistedStateEvent):
    type: Literal["org.matrix.msc1772.space.parent"]
    content: SpaceParentContent = Field(default_factory=SpaceParentContent)


class PostContentEvent(PersistedStateEvent):
    type: Literal["co.hirsz.blog.post_content"]
    content: PostContentPointer = Field(default_factory=PostContentPointer)


_KNOWN_STATE_TYPES = frozenset(
    {
        ROOM_CREATE,
        ROOM_NAME,
        ROOM_TOPIC,
        ROOM_CANONICAL_ALIAS,
        ROOM_MEMBER,
        SPACE_CHILD,
        SPACE_PARENT,
        POST_CONTENT,
    }
)


def _state_event_tag(value: Any) -> str:
    event_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return event_type if event_type in _KNOWN_STATE_TYPES else "generic"


AnyStateEvent = Annotated[
    Union[
        Annotated[CreateEvent, Tag(ROOM_CREATE)],
        Annotated[NameEvent, Tag(ROOM_NAME)],
        Annotated[TopicEvent, Tag(ROOM_TOPIC)],
        Annotated[CanonicalAliasEvent, Tag(ROOM_CANONICAL_ALIAS)],
        Annotated[MemberEvent, Tag(ROOM_MEMBER)],
        Annotated[SpaceChildEvent, Tag(SPACE_CHILD)],
        Annotated[SpaceParentEvent, Tag(SPACE_PARENT)],
        Annotated[PostContentEvent, Tag(POST_CONTENT)],
        Annotated[GenericStateEvent, Tag("generic")],
    ],
    Discriminator(_state_event_tag),
]


# ── Timeline events ──────────────────────────────────────────────────


class TextMessageContent(_Content):
    msgtype: str = "m.text"
    body: str = ""
    format: str | None = None
    formatted_body: str | None = None


class RoomEvent(BaseModel):
    """A single timeline event as returned by ``/rooms/{id}/event/{id}``."""

    type: str
    event_id: str
    sender: str = ""
    origin_server_ts: int = 0
    room_id: str = ""
    content: dict[str, Any] = Field(default_factory=dict)
    unsigned: dict[str, Any] | None = None

    def text_content(self) -> TextMessageContent:
        return TextMessageContent.model_validate(self.content)

    @property
    def replaced_at(self) -> int | None:
        """Timestamp of the ``m.replace`` relation aggregated on this event."""
        relations = (self.unsigned or {}).get("m.relations") or {}
        replace = relations.get("m.replace")
        if not replace:
            return None
        return replace.get("origin_server_ts")


# ── Requests and responses ───────────────────────────────────────────


class CreateRoomRequest(BaseModel):
    """Body of ``POST /createRoom``. Unset fields are omitted from the request."""

    visibility: Literal["public", "private"] | None = None
    room_alias_name: str | None = None
    name: str | None = None
    topic: str | None = None
    invite: list[str] | None = None
    room_version: str | None = None
    creation_content: dict[str, Any] | None = None
    initial_state: list[StateEvent] | None = None
    preset: Literal["private_chat", "public_chat", "trusted_private_chat"] | None = None
    is_direct: bool | None = None
    power_level_content_override: dict[str, Any] | None = None


class SpaceSummaryRequest(BaseModel):
    suggested_only: bool | None = None
    max_rooms_per_space: int | None = None


class PublicRoomsChunk(BaseModel):
    """One room in a space summary."""

    room_id: str
    name: str | None = None
    topic: str | None = None
    canonical_alias: str | None = None
    aliases: list[str] | None = None
    num_joined_members: int = 0
    world_readable: bool = False
    guest_can_join: bool = False
    avatar_url: str | None = None


class SpaceSummaryResponse(BaseModel):
    rooms: list[PublicRoomsChunk] = Field(default_factory=list)
    events: list[StateEvent] = Field(default_factory=list)
