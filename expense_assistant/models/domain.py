"""
Core Data Models for Expense Assistant

These models define the strict schemas for the records the assistant
reads and mutates on the user's behalf:
1. User profiles (identity + monthly budget)
2. Expenses (Masarif)
3. Appointments (Mawa3id)

DESIGN DECISION: Drafts are separate from persisted records.
A draft is what a tool call proposes; the storage layer assigns the
id and creation timestamp. This keeps "system-assigned" fields out of
the model's reach.
"""

import datetime as dt
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


DEFAULT_BUDGET = 5000.0


def new_record_id() -> str:
    """Generate a unique record identifier."""
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local_naive(value: datetime) -> datetime:
    """
    Normalize an appointment time to naive local time.

    The model produces local wall-clock strings ("2025-03-01T17:00:00");
    if an offset is present we convert it so every comparison in the
    scheduler happens in the same frame.
    """
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle.

    CRITICAL: An appointment only leaves SCHEDULED through an explicit
    status update. Nothing completes or cancels it automatically.
    """
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentType(str, Enum):
    """Kind of appointment."""
    MEETING = "meeting"
    CALL = "call"
    REMINDER = "reminder"
    OTHER = "other"


# =============================================================================
# USER
# =============================================================================

class User(BaseModel):
    """
    A user of the assistant.

    The email is the identity key for every record the user owns.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(
        ...,
        min_length=3,
        description="Unique identity key"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    budget: Optional[float] = Field(
        default=DEFAULT_BUDGET,
        ge=0,
        description="Monthly budget limit"
    )


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseDraft(BaseModel):
    """An expense as proposed by a tool call, before storage assigns identity."""
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str
    amount: float = Field(
        ...,
        ge=0,
        description="Amount spent"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-form category (Food, Transport, ...)"
    )
    description: str = Field(
        ...,
        max_length=500,
        description="Short description"
    )
    date: dt.date = Field(
        ...,
        description="Calendar date of the expense"
    )


class Expense(ExpenseDraft):
    """
    A persisted expense.

    The id is immutable once assigned.
    """

    id: str = Field(
        default_factory=new_record_id,
        description="Unique expense ID"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the expense was recorded"
    )


class SpendingSummary(BaseModel):
    """Dashboard totals: spent so far against the monthly budget."""

    total_spent: float = Field(..., ge=0)
    budget: float = Field(..., gt=0)
    remaining: float = Field(
        ...,
        description="Negative once the budget is exceeded"
    )
    progress_percent: float = Field(..., ge=0, le=100)

    @classmethod
    def from_expenses(
        cls,
        expenses: list[Expense],
        budget: Optional[float],
    ) -> "SpendingSummary":
        """An unset or zero budget falls back to the default limit."""
        limit = budget or DEFAULT_BUDGET
        total = sum(e.amount for e in expenses)
        return cls(
            total_spent=total,
            budget=limit,
            remaining=limit - total,
            progress_percent=min(total / limit * 100, 100.0),
        )


# =============================================================================
# APPOINTMENTS
# =============================================================================

class AppointmentDraft(BaseModel):
    """An appointment as proposed by a tool call."""
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Title or purpose of the appointment"
    )
    date: datetime = Field(
        ...,
        description="Full date and time of the appointment"
    )
    type: AppointmentType = Field(
        default=AppointmentType.REMINDER,
        description="Kind of appointment"
    )

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return to_local_naive(v)


class Appointment(AppointmentDraft):
    """
    A persisted appointment.

    Always created SCHEDULED with notified=False.
    The notified flag is written only by the notification scheduler.
    """

    id: str = Field(
        default_factory=new_record_id,
        description="Unique appointment ID"
    )
    status: AppointmentStatus = Field(
        default=AppointmentStatus.SCHEDULED,
        description="Lifecycle status"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the appointment was created"
    )
    notified: bool = Field(
        default=False,
        description="Whether the alert for this appointment already fired"
    )

    @property
    def is_pending_alert(self) -> bool:
        """Scheduled and never alerted."""
        return self.status == AppointmentStatus.SCHEDULED and not self.notified

    def summary(self) -> dict:
        """Redacted view handed to the model by getAppointments."""
        return {
            "id": self.id,
            "title": self.title,
            "time": self.date.strftime("%A %d %B %Y, %H:%M"),
            "status": self.status.value,
        }
