"""Operator-facing delivery channels."""
from .telegram import TelegramNotifier

__all__ = ["TelegramNotifier"]
