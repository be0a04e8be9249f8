"""
Turn Validation

DESIGN DECISION: A user turn is validated before anything is sent to
the model service. Rejected turns never cost a network round-trip and
are surfaced to the user directly as an error turn.

Checks:
- The turn carries text, audio, or both
- A recorded note is long enough to be meaningful (encoded size)

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the user can try again.
"""

from typing import Optional

from expense_assistant.config import get_settings
from expense_assistant.models.conversation import AudioClip


class TurnValidationError(Exception):
    """The turn was rejected before sending."""

    def __init__(self, message: str, field: str = "turn"):
        super().__init__(message)
        self.field = field


EMPTY_TURN_MESSAGE = "Ktb chi haja wla sjjel message."
AUDIO_TOO_SHORT_MESSAGE = "L-audio qsir bzaf. 3awd sjjel."


class TurnValidator:
    """Validates a chat turn before it is dispatched."""

    def __init__(self, min_audio_bytes: Optional[int] = None):
        if min_audio_bytes is None:
            min_audio_bytes = get_settings().chat.min_audio_bytes
        self._min_audio_bytes = min_audio_bytes

    def validate(
        self,
        text: Optional[str],
        audio: Optional[AudioClip],
    ) -> Optional[str]:
        """
        Check a turn.

        Returns:
            The text to send (stripped), or None for audio-only turns

        Raises:
            TurnValidationError: If the turn is empty or the audio too short
        """
        cleaned = text.strip() if text else None

        if not cleaned and audio is None:
            raise TurnValidationError(EMPTY_TURN_MESSAGE)

        if audio is not None and audio.size_bytes < self._min_audio_bytes:
            raise TurnValidationError(AUDIO_TOO_SHORT_MESSAGE, field="audio")

        return cleaned or None
