"""
Data Models Package

This package contains all Pydantic models used in the Expense Assistant.
All data flowing through the system must conform to these schemas.
"""

from expense_assistant.models.domain import (
    DEFAULT_BUDGET,
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AppointmentType,
    Expense,
    ExpenseDraft,
    SpendingSummary,
    User,
)
from expense_assistant.models.conversation import (
    MANUAL_ENTRY_TOOL,
    AudioClip,
    ConversationTurn,
    ManualEntryRequest,
    ToolCall,
    ToolResult,
    TurnRole,
)
from expense_assistant.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Domain models
    "DEFAULT_BUDGET",
    "Appointment",
    "AppointmentDraft",
    "AppointmentStatus",
    "AppointmentType",
    "Expense",
    "ExpenseDraft",
    "SpendingSummary",
    "User",
    # Conversation models
    "MANUAL_ENTRY_TOOL",
    "AudioClip",
    "ConversationTurn",
    "ManualEntryRequest",
    "ToolCall",
    "ToolResult",
    "TurnRole",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
