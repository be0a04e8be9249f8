"""Services package."""

from expense_assistant.services.storage import (
    AssistantStorageInterface,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    InMemoryAuditStorage,
    InMemoryStorage,
    NotFoundError,
    StorageError,
)
from expense_assistant.services.genai import (
    GeminiModelService,
    ModelService,
    ModelServiceError,
    TransientServiceError,
)
from expense_assistant.services.audio import (
    AudioDeviceError,
    DeviceUnavailableError,
)

__all__ = [
    # Storage services
    "AssistantStorageInterface",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsStorage",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "NotFoundError",
    "StorageError",
    # Model service
    "GeminiModelService",
    "ModelService",
    "ModelServiceError",
    "TransientServiceError",
    # Audio devices
    "AudioDeviceError",
    "DeviceUnavailableError",
]
