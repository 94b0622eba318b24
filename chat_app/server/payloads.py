"""Payload schemas for inbound WebSocket events."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_app.constants.session_constants import DEBATE_DEFAULT_SEGMENTS


class _Payload(BaseModel):
    """Accepts camelCase on the wire and snake_case from Python callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Envelope(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class RequestMatchPayload(_Payload):
    mode: Literal["video", "audio", "text", "any"]
    display_name: str | None = None


class RoomPayload(_Payload):
    room_id: str


class SendMessagePayload(_Payload):
    room_id: str
    text: str


class AdvanceSegmentPayload(_Payload):
    room_id: str
    segment: int | None = None


class RelayPayload(_Payload):
    room_id: str
    target_id: str | None = None
    payload: Any = None


class ReportPayload(_Payload):
    room_id: str
    reason: str = ""


class CreateDebatePayload(_Payload):
    name: str | None = None
    title: str | None = None
    segment_count: int = DEBATE_DEFAULT_SEGMENTS


class JoinDebatePayload(_Payload):
    code: str
    role: Literal["debater", "viewer"] = "viewer"
    name: str | None = None


class DebateCodePayload(_Payload):
    code: str


class DebateTextPayload(_Payload):
    code: str
    text: str
