"""Clients for the services the bot talks to."""

from alertmanager_telegram.clients.alertmanager import AlertmanagerClient
from alertmanager_telegram.clients.prometheus import PrometheusClient
from alertmanager_telegram.clients.telegram import (
    CallbackQuery,
    Message,
    TelegramAPIError,
    TelegramFloodError,
    TelegramTransport,
    Update,
    User,
)

__all__ = [
    "AlertmanagerClient",
    "CallbackQuery",
    "Message",
    "PrometheusClient",
    "TelegramAPIError",
    "TelegramFloodError",
    "TelegramTransport",
    "Update",
    "User",
]
