"""Notification port — how the morning plan push reaches a user.

The plan service only knows this protocol; the bot wires in TelegramNotifier.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Sends a plain-text message to one user."""

    async def send_message(self, user_id: int, text: str) -> None: ...
