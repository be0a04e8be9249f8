"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Non-technical users can view their expenses and appointments directly
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (last write wins, acceptable for one user on one device)
- Limited query capabilities (we filter in Python)

gspread is blocking, so every sheet access runs in a worker thread via
asyncio.to_thread to keep the event loop (audio, timers) responsive.
"""

import asyncio
import json
from datetime import date, datetime
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_assistant.config import get_settings
from expense_assistant.models.domain import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    AppointmentType,
    Expense,
    ExpenseDraft,
    User,
)
from expense_assistant.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_assistant.services.storage.interface import (
    AssistantStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)


USER_COLUMNS = [
    "email",
    "name",
    "budget",
]

EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "category",
    "description",
    "date",
    "created_at",
]

APPOINTMENT_COLUMNS = [
    "id",
    "user_id",
    "title",
    "date",
    "type",
    "status",
    "created_at",
    "notified",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "user_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Retry policy for individual Sheets API calls (quota hiccups, 5xx)
sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet creation. All methods are
    blocking and meant to be called from a worker thread.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.users_sheet_name, USER_COLUMNS)

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.expenses_sheet_name, EXPENSE_COLUMNS)

    def get_appointments_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.appointments_sheet_name, APPOINTMENT_COLUMNS
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsStorage(AssistantStorageInterface):
    """
    Google Sheets implementation of the assistant's storage.

    One worksheet per record type, one record per row, keyed by the
    value in the first column.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        default_budget: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        if default_budget is None:
            default_budget = get_settings().app.default_budget
        self._default_budget = default_budget

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _user_to_row(self, user: User) -> list:
        return [
            user.email,
            user.name,
            "" if user.budget is None else str(user.budget),
        ]

    def _row_to_user(self, row: list) -> User:
        budget = _safe_get(row, 2)
        return User(
            email=_safe_get(row, 0),
            name=_safe_get(row, 1),
            budget=float(budget) if budget else None,
        )

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            expense.id,
            expense.user_id,
            str(expense.amount),
            expense.category,
            expense.description,
            expense.date.isoformat(),
            expense.created_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        return Expense(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1),
            amount=float(_safe_get(row, 2, "0")),
            category=_safe_get(row, 3),
            description=_safe_get(row, 4),
            date=date.fromisoformat(_safe_get(row, 5)),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
        )

    def _appointment_to_row(self, appointment: Appointment) -> list:
        return [
            appointment.id,
            appointment.user_id,
            appointment.title,
            appointment.date.isoformat(),
            appointment.type.value,
            appointment.status.value,
            appointment.created_at.isoformat(),
            str(appointment.notified),
        ]

    def _row_to_appointment(self, row: list) -> Appointment:
        return Appointment(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1),
            title=_safe_get(row, 2),
            date=datetime.fromisoformat(_safe_get(row, 3)),
            type=AppointmentType(_safe_get(row, 4, AppointmentType.OTHER.value)),
            status=AppointmentStatus(_safe_get(row, 5, AppointmentStatus.SCHEDULED.value)),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
            notified=_safe_get(row, 7).lower() == "true",
        )

    # -------------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # -------------------------------------------------------------------------

    @sheets_retry
    def _read_rows(self, sheet: gspread.Worksheet) -> list[list]:
        # Skip header and empty rows
        return [row for row in sheet.get_all_values()[1:] if row and row[0]]

    @sheets_retry
    def _append_row(self, sheet: gspread.Worksheet, row: list) -> None:
        sheet.append_row(row, value_input_option="RAW")

    @sheets_retry
    def _replace_row(self, sheet: gspread.Worksheet, key: str, row: list) -> bool:
        """Overwrite the row whose first cell is `key`. False if absent."""
        all_rows = sheet.get_all_values()
        for idx, existing in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if existing and existing[0] == key:
                sheet.update(
                    range_name=f"A{idx}",
                    values=[row],
                    value_input_option="RAW",
                )
                return True
        return False

    @sheets_retry
    def _delete_row(self, sheet: gspread.Worksheet, key: str) -> bool:
        all_rows = sheet.get_all_values()
        for idx, existing in enumerate(all_rows[1:], start=2):
            if existing and existing[0] == key:
                sheet.delete_rows(idx)
                return True
        return False

    async def _run(self, action: str, func, *args):
        """Run a blocking sheet operation, mapping failures to StorageError."""
        try:
            return await asyncio.to_thread(func, *args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to {action}: {e}")

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def _find_user(self, email: str) -> Optional[User]:
        def find():
            sheet = self._client.get_users_sheet()
            for row in self._read_rows(sheet):
                if row[0] == email:
                    return self._row_to_user(row)
            return None

        return await self._run("load user", find)

    async def register_user(self, email: str, name: str) -> User:
        if await self._find_user(email) is not None:
            raise DuplicateError("User already exists")
        user = User(email=email, name=name, budget=self._default_budget)

        def append():
            self._append_row(self._client.get_users_sheet(), self._user_to_row(user))

        await self._run("register user", append)
        return user

    async def get_user(self, email: str) -> User:
        user = await self._find_user(email)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def update_user(self, user: User) -> User:
        def replace():
            sheet = self._client.get_users_sheet()
            return self._replace_row(sheet, user.email, self._user_to_row(user))

        if not await self._run("update user", replace):
            raise NotFoundError("User not found")
        return user

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def get_expenses(self, user_id: str) -> list[Expense]:
        def load():
            sheet = self._client.get_expenses_sheet()
            expenses = []
            for row in self._read_rows(sheet):
                if _safe_get(row, 1) != user_id:
                    continue
                try:
                    expenses.append(self._row_to_expense(row))
                except Exception:
                    continue  # Skip malformed rows
            return expenses

        expenses = await self._run("list expenses", load)
        # Sort by date descending (newest first)
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses

    async def add_expense(self, draft: ExpenseDraft) -> Expense:
        expense = Expense(**draft.model_dump())

        def append():
            self._append_row(
                self._client.get_expenses_sheet(), self._expense_to_row(expense)
            )

        await self._run("save expense", append)
        return expense

    async def update_expense(self, expense: Expense) -> Expense:
        def replace():
            sheet = self._client.get_expenses_sheet()
            return self._replace_row(sheet, expense.id, self._expense_to_row(expense))

        if not await self._run("update expense", replace):
            raise NotFoundError("Expense not found")
        return expense

    async def delete_expense(self, expense_id: str) -> bool:
        def delete():
            return self._delete_row(self._client.get_expenses_sheet(), expense_id)

        return await self._run("delete expense", delete)

    # -------------------------------------------------------------------------
    # Appointments
    # -------------------------------------------------------------------------

    async def get_appointments(self, user_id: str) -> list[Appointment]:
        def load():
            sheet = self._client.get_appointments_sheet()
            appointments = []
            for row in self._read_rows(sheet):
                if _safe_get(row, 1) != user_id:
                    continue
                try:
                    appointments.append(self._row_to_appointment(row))
                except Exception:
                    continue  # Skip malformed rows
            return appointments

        appointments = await self._run("list appointments", load)
        appointments.sort(key=lambda a: a.date)
        return appointments

    async def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        appointment = Appointment(**draft.model_dump())

        def append():
            self._append_row(
                self._client.get_appointments_sheet(),
                self._appointment_to_row(appointment),
            )

        await self._run("save appointment", append)
        return appointment

    async def update_appointment(self, appointment: Appointment) -> Appointment:
        def replace():
            sheet = self._client.get_appointments_sheet()
            return self._replace_row(
                sheet, appointment.id, self._appointment_to_row(appointment)
            )

        if not await self._run("update appointment", replace):
            raise NotFoundError("Appointment not found")
        return appointment

    async def delete_appointment(self, appointment_id: str) -> bool:
        def delete():
            return self._delete_row(
                self._client.get_appointments_sheet(), appointment_id
            )

        return await self._run("delete appointment", delete)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=_safe_get(row, 5) or None,
            correlation_id=UUID(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            user_id=_safe_get(row, 7) or None,
            description=_safe_get(row, 8),
            details=json.loads(_safe_get(row, 9)) if _safe_get(row, 9) else {},
            error_message=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""

        @sheets_retry
        def append():
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")

        try:
            await asyncio.to_thread(append)
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = await asyncio.to_thread(self._load_events)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
