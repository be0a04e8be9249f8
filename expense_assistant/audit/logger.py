"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of model-requested mutations
2. Debugging capability for failed turns and live sessions
3. A persistent record of fired appointment alerts

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_assistant.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_assistant.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Google Sheets (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_assistant.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_turn_received(
        self,
        user_id: str,
        has_text: bool,
        has_audio: bool,
        correlation_id: UUID,
    ) -> None:
        """Log an incoming chat turn."""
        await self.log(AuditEventBuilder.turn_received(
            user_id=user_id,
            has_text=has_text,
            has_audio=has_audio,
            correlation_id=correlation_id,
        ))

    async def log_turn_rejected(
        self,
        user_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.turn_rejected(
            user_id=user_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_send_retried(
        self,
        attempt: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a transient send failure that will be retried."""
        await self.log(AuditEventBuilder.send_retried(
            attempt=attempt,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_turn_completed(
        self,
        user_id: str,
        tool_calls: int,
        spoken: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.turn_completed(
            user_id=user_id,
            tool_calls=tool_calls,
            spoken=spoken,
            correlation_id=correlation_id,
        ))

    async def log_turn_failed(
        self,
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.turn_failed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_speech_synthesis_failed(
        self,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.speech_synthesis_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_tool_executed(
        self,
        user_id: str,
        tool_name: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID],
    ) -> None:
        """Log a successful tool execution."""
        await self.log(AuditEventBuilder.tool_executed(
            user_id=user_id,
            tool_name=tool_name,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_tool_failed(
        self,
        user_id: str,
        tool_name: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        await self.log(AuditEventBuilder.tool_failed(
            user_id=user_id,
            tool_name=tool_name,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_manual_entry_requested(
        self,
        user_id: str,
        prefilled_description: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.manual_entry_requested(
            user_id=user_id,
            prefilled_description=prefilled_description,
            correlation_id=correlation_id,
        ))

    async def log_live_session_opened(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.live_session_opened(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_live_session_failed(
        self,
        user_id: str,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a live session that could not be established or broke mid-way."""
        await self.log(AuditEventBuilder.live_session_failed(
            user_id=user_id,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_live_session_closed(
        self,
        user_id: str,
        failed_steps: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.live_session_closed(
            user_id=user_id,
            failed_steps=failed_steps,
            correlation_id=correlation_id,
        ))

    async def log_live_interrupted(
        self,
        stopped_frames: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.live_interrupted(
            stopped_frames=stopped_frames,
            correlation_id=correlation_id,
        ))

    async def log_appointment_alerted(
        self,
        user_id: str,
        appointment_id: str,
        title: str,
    ) -> None:
        """Log a fired appointment alert."""
        await self.log(AuditEventBuilder.appointment_alerted(
            user_id=user_id,
            appointment_id=appointment_id,
            title=title,
        ))

    async def log_alert_sound_failed(
        self,
        appointment_id: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.alert_sound_failed(
            appointment_id=appointment_id,
            error_message=error_message,
        ))

    async def log_notification_check_failed(
        self,
        user_id: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.notification_check_failed(
            user_id=user_id,
            error_message=error_message,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a chat turn or
    opening a live session). Pass it through all subsequent operations.
    """
    return uuid4()
