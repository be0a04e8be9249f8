"""
In-Memory Storage Implementation

Dict-backed storage used by the test suite and as the fallback when
Google Sheets is not configured. Nothing survives a restart.

Records are copied on the way in and on the way out so callers can never
mutate stored state without going through an update method.
"""

from typing import Optional

from expense_assistant.models.domain import (
    DEFAULT_BUDGET,
    Appointment,
    AppointmentDraft,
    Expense,
    ExpenseDraft,
    User,
)
from expense_assistant.models.audit import AuditEvent
from expense_assistant.services.storage.interface import (
    AssistantStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
)


class InMemoryStorage(AssistantStorageInterface):
    """In-memory implementation of the assistant's storage."""

    def __init__(self, default_budget: float = DEFAULT_BUDGET):
        self._default_budget = default_budget
        self._users: dict[str, User] = {}
        self._expenses: dict[str, Expense] = {}
        self._appointments: dict[str, Appointment] = {}

    async def register_user(self, email: str, name: str) -> User:
        if email in self._users:
            raise DuplicateError("User already exists")
        user = User(email=email, name=name, budget=self._default_budget)
        self._users[user.email] = user
        return user.model_copy()

    async def get_user(self, email: str) -> User:
        user = self._users.get(email)
        if user is None:
            raise NotFoundError("User not found")
        return user.model_copy()

    async def update_user(self, user: User) -> User:
        if user.email not in self._users:
            raise NotFoundError("User not found")
        self._users[user.email] = user.model_copy()
        return user

    async def get_expenses(self, user_id: str) -> list[Expense]:
        expenses = [
            e.model_copy() for e in self._expenses.values()
            if e.user_id == user_id
        ]
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses

    async def add_expense(self, draft: ExpenseDraft) -> Expense:
        expense = Expense(**draft.model_dump())
        self._expenses[expense.id] = expense
        return expense.model_copy()

    async def update_expense(self, expense: Expense) -> Expense:
        if expense.id not in self._expenses:
            raise NotFoundError("Expense not found")
        self._expenses[expense.id] = expense.model_copy()
        return expense

    async def delete_expense(self, expense_id: str) -> bool:
        return self._expenses.pop(expense_id, None) is not None

    async def get_appointments(self, user_id: str) -> list[Appointment]:
        appointments = [
            a.model_copy() for a in self._appointments.values()
            if a.user_id == user_id
        ]
        appointments.sort(key=lambda a: a.date)
        return appointments

    async def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        appointment = Appointment(**draft.model_dump())
        self._appointments[appointment.id] = appointment
        return appointment.model_copy()

    async def update_appointment(self, appointment: Appointment) -> Appointment:
        if appointment.id not in self._appointments:
            raise NotFoundError("Appointment not found")
        self._appointments[appointment.id] = appointment.model_copy()
        return appointment

    async def delete_appointment(self, appointment_id: str) -> bool:
        return self._appointments.pop(appointment_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self, max_events: Optional[int] = None):
        self._events: list[AuditEvent] = []
        self._max_events = max_events

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        if self._max_events is not None and len(self._events) > self._max_events:
            # Oldest events go first
            del self._events[: len(self._events) - self._max_events]
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
