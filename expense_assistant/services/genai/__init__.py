"""
Model Service Package

Abstract chat / speech / live-audio capabilities and their Gemini
implementation.
"""

from expense_assistant.services.genai.interface import (
    ChatSession,
    LiveAudioFrame,
    LiveChannel,
    LiveEvent,
    LiveInterruption,
    LiveToolCall,
    ModelReply,
    ModelService,
    ModelServiceError,
    TransientServiceError,
)
from expense_assistant.services.genai.gemini import (
    GeminiModelService,
    map_service_error,
)

__all__ = [
    # Interfaces
    "ChatSession",
    "LiveChannel",
    "ModelService",
    # Values
    "LiveAudioFrame",
    "LiveEvent",
    "LiveInterruption",
    "LiveToolCall",
    "ModelReply",
    # Exceptions
    "ModelServiceError",
    "TransientServiceError",
    # Gemini implementation
    "GeminiModelService",
    "map_service_error",
]
