"""
Conversation Models

Transient, session-owned objects: conversation turns and the
ToolCall / ToolResult pairs exchanged with the model service.
None of these are ever persisted.

INVARIANT: Every ToolCall the model issues within one reply receives
exactly one ToolResult carrying the same call id before the reply is
considered resolved.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from expense_assistant.models.domain import Appointment, Expense


MANUAL_ENTRY_TOOL = "requestManualEntry"

PCM16_BYTES_PER_SAMPLE = 2


class TurnRole(str, Enum):
    USER = "user"
    MODEL = "model"


class AudioClip(BaseModel):
    """
    An audio payload attached to a turn.

    Recorded user notes are container audio (webm/ogg) with a measured
    duration; synthesized replies are raw 16-bit mono PCM whose duration
    can be derived from the byte length.
    """

    data: bytes
    mime_type: str = "audio/webm"
    duration_seconds: Optional[float] = Field(default=None, ge=0.0)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @classmethod
    def from_pcm16(cls, data: bytes, sample_rate: int) -> "AudioClip":
        """Wrap raw PCM16 mono audio, computing its duration."""
        return cls(
            data=data,
            mime_type=f"audio/pcm;rate={sample_rate}",
            duration_seconds=len(data) / PCM16_BYTES_PER_SAMPLE / sample_rate,
        )


class ManualEntryRequest(BaseModel):
    """
    The model asked the UI to show a manual expense form.

    This is a UI signal, not a domain mutation: it never reaches storage.
    """

    prefilled_description: Optional[str] = None


class ConversationTurn(BaseModel):
    """One entry of the conversation history."""

    role: TurnRole
    text: Optional[str] = None
    audio: Optional[AudioClip] = None

    # Cards rendered alongside the reply
    expense: Optional[Expense] = None
    appointment: Optional[Appointment] = None
    manual_entry: Optional[ManualEntryRequest] = None

    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ConversationTurn":
        return cls(role=TurnRole.MODEL, text=message, is_error=True)


class ToolCall(BaseModel):
    """A function call requested by the model."""

    call_id: Optional[str] = Field(
        default=None,
        description="Correlation id assigned by the model service"
    )
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_manual_entry(self) -> bool:
        return self.name == MANUAL_ENTRY_TOOL

    def manual_entry_request(self) -> Optional[ManualEntryRequest]:
        """The manual-entry variant of this call, or None for domain tools."""
        if not self.is_manual_entry:
            return None
        return ManualEntryRequest(
            prefilled_description=self.arguments.get("prefilledDescription"),
        )


class ToolResult(BaseModel):
    """The answer to one ToolCall, correlated by call id."""

    call_id: Optional[str] = None
    name: str
    payload: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def response(self) -> dict[str, Any]:
        """The function response body sent back to the model."""
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.payload or {}}
