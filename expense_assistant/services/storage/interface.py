"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the conversational core decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the tool bridge, the notification scheduler and the
account screens need. Every record is scoped by the owning user's email.
"""

from abc import ABC, abstractmethod

from expense_assistant.models.domain import (
    Appointment,
    AppointmentDraft,
    Expense,
    ExpenseDraft,
    User,
)
from expense_assistant.models.audit import AuditEvent


class AssistantStorageInterface(ABC):
    """
    Abstract interface for the assistant's records.

    Any storage implementation (Google Sheets, in-memory, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @abstractmethod
    async def register_user(self, email: str, name: str) -> User:
        """
        Create a user with the default budget.

        Raises:
            DuplicateError: If a user with this email already exists
        """
        pass

    @abstractmethod
    async def get_user(self, email: str) -> User:
        """
        Load a user by email.

        Raises:
            NotFoundError: If no such user exists
        """
        pass

    @abstractmethod
    async def update_user(self, user: User) -> User:
        """
        Persist changes to a user profile (name, budget).

        Raises:
            NotFoundError: If the user doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_expenses(self, user_id: str) -> list[Expense]:
        """
        List a user's expenses.

        Returns:
            Expenses sorted by date, newest first
        """
        pass

    @abstractmethod
    async def add_expense(self, draft: ExpenseDraft) -> Expense:
        """
        Create an expense, assigning id and creation timestamp.

        Returns:
            The persisted expense
        """
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Replace a stored expense with the given full record.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense by ID.

        Returns:
            True if something was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_appointments(self, user_id: str) -> list[Appointment]:
        """
        List a user's appointments.

        Returns:
            Appointments sorted by date, earliest first
        """
        pass

    @abstractmethod
    async def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        """
        Create an appointment.

        New appointments are always SCHEDULED with notified=False.
        """
        pass

    @abstractmethod
    async def update_appointment(self, appointment: Appointment) -> Appointment:
        """
        Replace a stored appointment with the given full record.

        Raises:
            NotFoundError: If the appointment doesn't exist
        """
        pass

    @abstractmethod
    async def delete_appointment(self, appointment_id: str) -> bool:
        """
        Delete an appointment by ID, whatever its status.

        Deleting an unknown ID is not an error.

        Returns:
            True if something was deleted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
