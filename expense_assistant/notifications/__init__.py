"""Appointment notifications."""

from expense_assistant.notifications.scheduler import NotificationScheduler

__all__ = ["NotificationScheduler"]
