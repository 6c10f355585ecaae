"""Telegram bot for Prometheus Alertmanager."""

__version__ = "0.1.0"

PROGRAM_NAME = "alertmanager-telegram-bot"
