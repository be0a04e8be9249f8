"""
Tool Execution Bridge

Translates a named function call + arguments into a storage operation
and a structured result. This is the ONLY code path through which the
model changes persisted state, whatever the input modality (typed chat,
voice note or live session).

DESIGN DECISION: The bridge never raises.
- Bad arguments -> {"error": "Invalid arguments: ..."}
- Unknown ids -> {"error": "Expense not found"} / {"error": "Appointment not found"}
- Storage failures -> {"error": <message>}
- Unknown tools -> {"error": "Unknown tool"}
A single failing call therefore never aborts the enclosing turn, and
sibling calls in the same reply still run.

No retry, no network concerns: retrying is the caller's business.
"""

import datetime as dt
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from expense_assistant.audit import AuditLogger
from expense_assistant.models.conversation import ManualEntryRequest, ToolCall, ToolResult
from expense_assistant.models.domain import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AppointmentType,
    Expense,
    ExpenseDraft,
    User,
)
from expense_assistant.services.storage.interface import AssistantStorageInterface
from expense_assistant.tools.declarations import (
    ADD_APPOINTMENT,
    ADD_EXPENSE,
    DELETE_APPOINTMENT,
    GET_APPOINTMENTS,
    GET_EXPENSES,
    MUTATING_TOOLS,
    REQUEST_MANUAL_ENTRY,
    SET_BUDGET,
    UPDATE_APPOINTMENT_STATUS,
    UPDATE_EXPENSE,
)


logger = structlog.get_logger(__name__)

UNKNOWN_TOOL = "Unknown tool"
EXPENSE_NOT_FOUND = "Expense not found"
APPOINTMENT_NOT_FOUND = "Appointment not found"


# =============================================================================
# ARGUMENT SCHEMAS
# =============================================================================

class _ToolArgs(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class AddExpenseArgs(_ToolArgs):
    amount: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    description: str
    date: dt.date


class UpdateExpenseArgs(_ToolArgs):
    id: str = Field(..., min_length=1)
    amount: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[dt.date] = None


class SetBudgetArgs(_ToolArgs):
    amount: float = Field(..., ge=0)


class ManualEntryArgs(_ToolArgs):
    prefilledDescription: Optional[str] = None


class AddAppointmentArgs(_ToolArgs):
    title: str = Field(..., min_length=1)
    date: datetime
    type: AppointmentType

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> Any:
        """Anything outside the known kinds is filed as 'other'."""
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in {t.value for t in AppointmentType}:
                return AppointmentType.OTHER
        return v


class UpdateAppointmentStatusArgs(_ToolArgs):
    id: str = Field(..., min_length=1)
    status: Literal["completed", "cancelled"]

    @field_validator("status", mode="before")
    @classmethod
    def lowercase_status(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class DeleteAppointmentArgs(_ToolArgs):
    id: str = Field(..., min_length=1)


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of the first problem, phrased for the model."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "arguments"
    return f"Invalid arguments: {location}: {first.get('msg', 'invalid value')}"


# =============================================================================
# RESULT
# =============================================================================

class ToolExecution(BaseModel):
    """
    Outcome of one tool call.

    Exactly one of `result` / `error` is set. The record fields carry
    snapshots for the UI (cards, refreshed user) and are never sent to
    the model as-is.
    """

    tool_name: str
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    expense: Optional[Expense] = None
    appointment: Optional[Appointment] = None
    user: Optional[User] = None
    manual_entry: Optional[ManualEntryRequest] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def mutated(self) -> bool:
        """True when a state-changing tool succeeded."""
        return self.ok and self.tool_name in MUTATING_TOOLS

    def to_tool_result(self, call_id: Optional[str]) -> ToolResult:
        return ToolResult(
            call_id=call_id,
            name=self.tool_name,
            payload=self.result,
            error=self.error,
        )


# =============================================================================
# BRIDGE
# =============================================================================

class ToolExecutionBridge:
    """
    Maps each of the nine tools to storage operations.

    Usage:
        bridge = ToolExecutionBridge(storage)
        execution = await bridge.execute("addExpense", {...}, user)
        result = execution.to_tool_result(call.call_id)
    """

    def __init__(
        self,
        storage: AssistantStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        recent_expenses_limit: int = 10,
        currency: str = "DH",
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._recent_expenses_limit = recent_expenses_limit
        self._currency = currency

        self._handlers = {
            ADD_EXPENSE: self._add_expense,
            UPDATE_EXPENSE: self._update_expense,
            SET_BUDGET: self._set_budget,
            GET_EXPENSES: self._get_expenses,
            REQUEST_MANUAL_ENTRY: self._request_manual_entry,
            ADD_APPOINTMENT: self._add_appointment,
            GET_APPOINTMENTS: self._get_appointments,
            UPDATE_APPOINTMENT_STATUS: self._update_appointment_status,
            DELETE_APPOINTMENT: self._delete_appointment,
        }

    @property
    def currency(self) -> str:
        return self._currency

    async def execute(
        self,
        tool_name: str,
        arguments: Optional[dict[str, Any]],
        user: User,
        correlation_id: Optional[UUID] = None,
    ) -> ToolExecution:
        """Run one tool. Never raises."""
        handler = self._handlers.get(tool_name)
        if handler is None:
            execution = ToolExecution(tool_name=tool_name, error=UNKNOWN_TOOL)
        else:
            try:
                execution = await handler(arguments or {}, user)
            except ValidationError as e:
                execution = ToolExecution(
                    tool_name=tool_name,
                    error=describe_validation_error(e),
                )
            except Exception as e:
                logger.warning("tool_execution_failed", tool=tool_name, error=str(e))
                execution = ToolExecution(tool_name=tool_name, error=str(e) or type(e).__name__)

        await self._audit_execution(execution, user, correlation_id)
        return execution

    async def execute_call(
        self,
        call: ToolCall,
        user: User,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[ToolExecution, ToolResult]:
        """Run a ToolCall and build its correlated ToolResult."""
        execution = await self.execute(call.name, call.arguments, user, correlation_id)
        return execution, execution.to_tool_result(call.call_id)

    async def _audit_execution(
        self,
        execution: ToolExecution,
        user: User,
        correlation_id: Optional[UUID],
    ) -> None:
        if execution.ok:
            record = execution.expense or execution.appointment
            await self._audit.log_tool_executed(
                user_id=user.email,
                tool_name=execution.tool_name,
                entity_id=record.id if record else None,
                correlation_id=correlation_id,
            )
        else:
            await self._audit.log_tool_failed(
                user_id=user.email,
                tool_name=execution.tool_name,
                error_message=execution.error,
                correlation_id=correlation_id,
            )

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def _add_expense(self, arguments: dict, user: User) -> ToolExecution:
        args = AddExpenseArgs.model_validate(arguments)
        expense = await self._storage.add_expense(ExpenseDraft(
            user_id=user.email,
            amount=args.amount,
            category=args.category,
            description=args.description,
            date=args.date,
        ))
        return ToolExecution(
            tool_name=ADD_EXPENSE,
            result={
                "message": "Expense added successfully",
                "expense": expense.model_dump(mode="json"),
            },
            expense=expense,
        )

    async def _update_expense(self, arguments: dict, user: User) -> ToolExecution:
        args = UpdateExpenseArgs.model_validate(arguments)
        expenses = await self._storage.get_expenses(user.email)
        existing = next((e for e in expenses if e.id == args.id), None)
        if existing is None:
            return ToolExecution(tool_name=UPDATE_EXPENSE, error=EXPENSE_NOT_FOUND)

        # Only the fields the model actually supplied are merged
        changes = args.model_dump(exclude={"id"}, exclude_none=True)
        updated = Expense.model_validate({**existing.model_dump(), **changes})
        updated = await self._storage.update_expense(updated)
        return ToolExecution(
            tool_name=UPDATE_EXPENSE,
            result={
                "message": "Expense updated",
                "expense": updated.model_dump(mode="json"),
            },
            expense=updated,
        )

    async def _set_budget(self, arguments: dict, user: User) -> ToolExecution:
        args = SetBudgetArgs.model_validate(arguments)
        updated = await self._storage.update_user(
            user.model_copy(update={"budget": args.amount})
        )
        return ToolExecution(
            tool_name=SET_BUDGET,
            result={
                "message": f"Budget set to {args.amount:g} {self._currency}",
                "user": updated.model_dump(mode="json"),
            },
            user=updated,
        )

    async def _get_expenses(self, arguments: dict, user: User) -> ToolExecution:
        expenses = await self._storage.get_expenses(user.email)
        recent = expenses[: self._recent_expenses_limit]
        return ToolExecution(
            tool_name=GET_EXPENSES,
            result={"expenses": [e.model_dump(mode="json") for e in recent]},
        )

    async def _request_manual_entry(self, arguments: dict, user: User) -> ToolExecution:
        # UI signal only: storage is never touched
        args = ManualEntryArgs.model_validate(arguments)
        return ToolExecution(
            tool_name=REQUEST_MANUAL_ENTRY,
            result={"message": "Manual form requested"},
            manual_entry=ManualEntryRequest(prefilled_description=args.prefilledDescription),
        )

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    async def _add_appointment(self, arguments: dict, user: User) -> ToolExecution:
        args = AddAppointmentArgs.model_validate(arguments)
        appointment = await self._storage.add_appointment(AppointmentDraft(
            user_id=user.email,
            title=args.title,
            date=args.date,
            type=args.type,
        ))
        when = appointment.date.strftime("%A %d %B %Y, %H:%M")
        return ToolExecution(
            tool_name=ADD_APPOINTMENT,
            result={
                "message": f"Appointment scheduled: {appointment.title} at {when}",
                "appointment": appointment.model_dump(mode="json"),
            },
            appointment=appointment,
        )

    async def _get_appointments(self, arguments: dict, user: User) -> ToolExecution:
        appointments = await self._storage.get_appointments(user.email)
        return ToolExecution(
            tool_name=GET_APPOINTMENTS,
            result={"appointments": [a.summary() for a in appointments]},
        )

    async def _update_appointment_status(self, arguments: dict, user: User) -> ToolExecution:
        args = UpdateAppointmentStatusArgs.model_validate(arguments)
        appointments = await self._storage.get_appointments(user.email)
        existing = next((a for a in appointments if a.id == args.id), None)
        if existing is None:
            return ToolExecution(tool_name=UPDATE_APPOINTMENT_STATUS, error=APPOINTMENT_NOT_FOUND)

        updated = await self._storage.update_appointment(
            existing.model_copy(update={"status": AppointmentStatus(args.status)})
        )
        return ToolExecution(
            tool_name=UPDATE_APPOINTMENT_STATUS,
            result={"message": f"Appointment marked as {args.status}"},
            appointment=updated,
        )

    async def _delete_appointment(self, arguments: dict, user: User) -> ToolExecution:
        args = DeleteAppointmentArgs.model_validate(arguments)
        # Idempotent: an unknown id is not an error
        await self._storage.delete_appointment(args.id)
        return ToolExecution(
            tool_name=DELETE_APPOINTMENT,
            result={"message": "Appointment deleted"},
        )
