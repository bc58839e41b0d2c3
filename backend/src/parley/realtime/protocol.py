"""Envelope and payload shapes of the live ``/ws`` protocol.

Every frame, in either direction, is a JSON object ``{"type": ..., "payload": {...}}``.
Inbound payloads are validated with pydantic models so that the router only
ever sees well-typed values; anything that does not fit is a protocol error
and gets dropped by the caller.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

from pydantic import (
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from app.schemas.base import CamelModel
from app.schemas.messages import MessageRead

AUTHENTICATE = "authenticate"
MESSAGE = "message"
MESSAGE_SENT = "message_sent"
READ_RECEIPT = "read_receipt"
TYPING = "typing"
STATUS_CHANGE = "status_change"

INBOUND_TYPES = frozenset({AUTHENTICATE, MESSAGE, READ_RECEIPT, TYPING})


class ProtocolError(ValueError):
    """Raised when a frame cannot be turned into a known, valid event."""


class InboundEnvelope(CamelModel):
    type: StrictStr
    payload: Dict[str, Any]


class AuthenticatePayload(CamelModel):
    user_id: StrictInt = Field(gt=0)


class SendMessagePayload(CamelModel):
    receiver_id: StrictInt
    content: StrictStr

    @field_validator("content")
    @classmethod
    def _normalise_content(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip()
        if not value:
            raise ValueError("content must not be blank")
        limit = (info.context or {}).get("max_content_length")
        if limit is not None and len(value) > limit:
            raise ValueError(f"content exceeds {limit} characters")
        return value


class ReadReceiptPayload(CamelModel):
    message_id: StrictInt


class TypingPayload(CamelModel):
    receiver_id: StrictInt
    is_typing: StrictBool


PAYLOAD_MODELS: Mapping[str, type[CamelModel]] = {
    AUTHENTICATE: AuthenticatePayload,
    MESSAGE: SendMessagePayload,
    READ_RECEIPT: ReadReceiptPayload,
    TYPING: TypingPayload,
}


def decode_envelope(raw: str | bytes) -> InboundEnvelope:
    """Parse a raw frame into an envelope with a recognised ``type``."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Frame must be a JSON object")
    try:
        envelope = InboundEnvelope.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid envelope: {exc.error_count()} error(s)") from exc
    if envelope.type not in INBOUND_TYPES:
        raise ProtocolError(f"Unknown event type {envelope.type!r}")
    return envelope


def parse_payload(
    envelope: InboundEnvelope, *, context: Mapping[str, Any] | None = None
) -> CamelModel:
    """Validate the payload of ``envelope`` against the model for its type.

    ``context`` carries server limits such as ``max_content_length``.
    """

    model = PAYLOAD_MODELS.get(envelope.type)
    if model is None:
        raise ProtocolError(f"Unknown event type {envelope.type!r}")
    try:
        return model.model_validate(envelope.payload, context=context)
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid {envelope.type} payload: {exc.error_count()} error(s)"
        ) from exc


def build_event(event_type: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {"type": event_type, "payload": dict(payload)}


def status_change_event(user_id: int, is_online: bool) -> Dict[str, Any]:
    return build_event(STATUS_CHANGE, {"userId": user_id, "isOnline": is_online})


def message_event(message: MessageRead, *, confirmation: bool = False) -> Dict[str, Any]:
    return build_event(MESSAGE_SENT if confirmation else MESSAGE, message.to_wire())


def read_receipt_event(message: MessageRead) -> Dict[str, Any]:
    wire = message.to_wire()
    return build_event(READ_RECEIPT, {"messageId": wire["id"], "readAt": wire["readAt"]})


def typing_event(sender_id: int, is_typing: bool) -> Dict[str, Any]:
    return build_event(TYPING, {"senderId": sender_id, "isTyping": is_typing})


__all__ = [
    "AUTHENTICATE",
    "MESSAGE",
    "MESSAGE_SENT",
    "READ_RECEIPT",
    "TYPING",
    "STATUS_CHANGE",
    "INBOUND_TYPES",
    "ProtocolError",
    "InboundEnvelope",
    "AuthenticatePayload",
    "SendMessagePayload",
    "ReadReceiptPayload",
    "TypingPayload",
    "decode_envelope",
    "parse_payload",
    "build_event",
    "status_change_event",
    "message_event",
    "read_receipt_event",
    "typing_event",
]
