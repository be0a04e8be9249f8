"""
Audit Models for Expense Assistant

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of every state change the model requested
2. Debugging information when a turn or live session fails
3. A record of which appointment alerts fired and when

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each conversational component has its own family of event types.
    """
    # Chat turns
    TURN_RECEIVED = "turn_received"
    TURN_REJECTED = "turn_rejected"
    SEND_RETRIED = "send_retried"
    TURN_COMPLETED = "turn_completed"
    TURN_FAILED = "turn_failed"
    SPEECH_SYNTHESIS_FAILED = "speech_synthesis_failed"

    # Tool execution
    TOOL_EXECUTED = "tool_executed"
    TOOL_FAILED = "tool_failed"
    MANUAL_ENTRY_REQUESTED = "manual_entry_requested"

    # Live voice session
    LIVE_SESSION_OPENED = "live_session_opened"
    LIVE_SESSION_FAILED = "live_session_failed"
    LIVE_SESSION_CLOSED = "live_session_closed"
    LIVE_INTERRUPTED = "live_interrupted"

    # Notifications
    APPOINTMENT_ALERTED = "appointment_alerted"
    ALERT_SOUND_FAILED = "alert_sound_failed"
    NOTIFICATION_CHECK_FAILED = "notification_check_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'appointment', 'turn')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one turn)"
    )

    user_id: Optional[str] = Field(
        default=None,
        description="User on whose behalf the action happened"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, user_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.user_id or "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.turn_received(user_id, has_audio, correlation_id)
        event = AuditEventBuilder.tool_executed(user_id, "addExpense", correlation_id)
    """

    @staticmethod
    def turn_received(
        user_id: str,
        has_text: bool,
        has_audio: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TURN_RECEIVED,
            entity_type="turn",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Voice turn received" if has_audio else "Text turn received",
            details={
                "has_text": has_text,
                "has_audio": has_audio,
            },
            is_user_action=True,
        )

    @staticmethod
    def turn_rejected(
        user_id: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TURN_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Turn rejected before sending",
            error_message=reason,
        )

    @staticmethod
    def send_retried(
        attempt: int,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SEND_RETRIED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            correlation_id=correlation_id,
            description=f"Send attempt {attempt} failed, retrying",
            details={"attempt": attempt},
            error_message=error_message,
        )

    @staticmethod
    def turn_completed(
        user_id: str,
        tool_calls: int,
        spoken: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TURN_COMPLETED,
            entity_type="turn",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Turn completed with {tool_calls} tool call(s)",
            details={
                "tool_calls": tool_calls,
                "spoken": spoken,
            },
        )

    @staticmethod
    def turn_failed(
        user_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TURN_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="turn",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Turn failed",
            error_message=error_message,
        )

    @staticmethod
    def speech_synthesis_failed(
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPEECH_SYNTHESIS_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="turn",
            correlation_id=correlation_id,
            description="Spoken reply could not be produced",
            error_message=error_message,
        )

    @staticmethod
    def tool_executed(
        user_id: str,
        tool_name: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_EXECUTED,
            entity_type="tool",
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Tool executed: {tool_name}",
            details={"tool": tool_name},
        )

    @staticmethod
    def tool_failed(
        user_id: str,
        tool_name: str,
        error_message: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="tool",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Tool failed: {tool_name}",
            details={"tool": tool_name},
            error_message=error_message,
        )

    @staticmethod
    def manual_entry_requested(
        user_id: str,
        prefilled_description: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANUAL_ENTRY_REQUESTED,
            entity_type="turn",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Manual expense form requested",
            details={"prefilled_description": prefilled_description},
        )

    @staticmethod
    def live_session_opened(
        user_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIVE_SESSION_OPENED,
            entity_type="live_session",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Live voice session opened",
            is_user_action=True,
        )

    @staticmethod
    def live_session_failed(
        user_id: str,
        stage: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIVE_SESSION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="live_session",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Live voice session failed during {stage}",
            details={"stage": stage},
            error_message=error_message,
        )

    @staticmethod
    def live_session_closed(
        user_id: str,
        failed_steps: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIVE_SESSION_CLOSED,
            severity=AuditSeverity.WARNING if failed_steps else AuditSeverity.INFO,
            entity_type="live_session",
            user_id=user_id,
            correlation_id=correlation_id,
            description="Live voice session closed",
            details={"failed_steps": failed_steps},
        )

    @staticmethod
    def live_interrupted(
        stopped_frames: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIVE_INTERRUPTED,
            severity=AuditSeverity.DEBUG,
            entity_type="live_session",
            correlation_id=correlation_id,
            description=f"Playback interrupted, {stopped_frames} frame(s) stopped",
            details={"stopped_frames": stopped_frames},
        )

    @staticmethod
    def appointment_alerted(
        user_id: str,
        appointment_id: str,
        title: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.APPOINTMENT_ALERTED,
            entity_type="appointment",
            entity_id=appointment_id,
            user_id=user_id,
            description=f"Alert fired: {title}",
        )

    @staticmethod
    def alert_sound_failed(
        appointment_id: str,
        error_message: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALERT_SOUND_FAILED,
            severity=AuditSeverity.DEBUG,
            entity_type="appointment",
            entity_id=appointment_id,
            description="Alert sound could not be played",
            error_message=error_message,
        )

    @staticmethod
    def notification_check_failed(
        user_id: str,
        error_message: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_CHECK_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="appointment",
            user_id=user_id,
            description="Appointment check failed",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
