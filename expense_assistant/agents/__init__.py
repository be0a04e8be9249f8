"""Conversational agents package."""

from expense_assistant.agents.chat_dispatcher import ChatDispatcher, TurnState
from expense_assistant.agents.live_session import LiveSessionManager, LiveSessionState

__all__ = [
    "ChatDispatcher",
    "LiveSessionManager",
    "LiveSessionState",
    "TurnState",
]
