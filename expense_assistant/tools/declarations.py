"""
Tool Declarations

The nine functions the model may call. This list is the entire contract
the conversational core exposes to the model service: adding a tool
means adding it here AND to the ToolExecutionBridge dispatch table.

Declarations are plain dicts in the model service's schema dialect so
they can be handed to any backend.
"""

from typing import Optional

from expense_assistant.models.conversation import MANUAL_ENTRY_TOOL

ADD_EXPENSE = "addExpense"
UPDATE_EXPENSE = "updateExpense"
SET_BUDGET = "setBudget"
GET_EXPENSES = "getExpenses"
REQUEST_MANUAL_ENTRY = MANUAL_ENTRY_TOOL
ADD_APPOINTMENT = "addAppointment"
GET_APPOINTMENTS = "getAppointments"
UPDATE_APPOINTMENT_STATUS = "updateAppointmentStatus"
DELETE_APPOINTMENT = "deleteAppointment"

# Tools whose success changes persisted state
MUTATING_TOOLS = frozenset({
    ADD_EXPENSE,
    UPDATE_EXPENSE,
    SET_BUDGET,
    ADD_APPOINTMENT,
    UPDATE_APPOINTMENT_STATUS,
    DELETE_APPOINTMENT,
})


def _object(properties: dict, required: Optional[list[str]] = None) -> dict:
    schema = {"type": "OBJECT", "properties": properties}
    if required:
        schema["required"] = required
    return schema


TOOL_DECLARATIONS: list[dict] = [
    # --- Expenses (Masarif) ---
    {
        "name": ADD_EXPENSE,
        "description": "Record a new expense. Use this for financial transactions.",
        "parameters": _object(
            {
                "amount": {"type": "NUMBER", "description": "The cost."},
                "category": {
                    "type": "STRING",
                    "description": "Category: Food, Transport, Shopping, etc.",
                },
                "description": {"type": "STRING", "description": "Short description."},
                "date": {"type": "STRING", "description": "ISO Date YYYY-MM-DD."},
            },
            ["amount", "category", "description", "date"],
        ),
    },
    {
        "name": UPDATE_EXPENSE,
        "description": "Update an existing expense.",
        "parameters": _object(
            {
                "id": {"type": "STRING"},
                "amount": {"type": "NUMBER"},
                "category": {"type": "STRING"},
                "description": {"type": "STRING"},
                "date": {"type": "STRING"},
            },
            ["id"],
        ),
    },
    {
        "name": SET_BUDGET,
        "description": "Set the monthly budget limit.",
        "parameters": _object({"amount": {"type": "NUMBER"}}, ["amount"]),
    },
    {
        "name": GET_EXPENSES,
        "description": "Retrieve expense history.",
        "parameters": _object({}),
    },
    {
        "name": REQUEST_MANUAL_ENTRY,
        "description": "Use when user input is vague about an expense.",
        "parameters": _object({"prefilledDescription": {"type": "STRING"}}),
    },
    # --- Appointments (Mawa3id) ---
    {
        "name": ADD_APPOINTMENT,
        "description": "Schedule a new appointment, meeting, or reminder (Maw3id).",
        "parameters": _object(
            {
                "title": {
                    "type": "STRING",
                    "description": 'Title or purpose of the appointment (e.g., "Meeting with Said").',
                },
                "date": {
                    "type": "STRING",
                    "description": (
                        "Full ISO Date and Time (YYYY-MM-DDTHH:mm:ss). "
                        "Calculate this based on user input and current time."
                    ),
                },
                "type": {
                    "type": "STRING",
                    "description": "One of: meeting, call, reminder, other",
                },
            },
            ["title", "date", "type"],
        ),
    },
    {
        "name": GET_APPOINTMENTS,
        "description": "List upcoming or past appointments/mawa3id.",
        "parameters": _object({}),
    },
    {
        "name": UPDATE_APPOINTMENT_STATUS,
        "description": "Mark an appointment as completed or cancelled.",
        "parameters": _object(
            {
                "id": {"type": "STRING"},
                "status": {"type": "STRING", "description": "completed or cancelled"},
            },
            ["id", "status"],
        ),
    },
    {
        "name": DELETE_APPOINTMENT,
        "description": "Remove an appointment.",
        "parameters": _object({"id": {"type": "STRING"}}, ["id"]),
    },
]


def tool_names() -> list[str]:
    return [declaration["name"] for declaration in TOOL_DECLARATIONS]
