"""Channel base: delivery boundary used by turns and approval decisions."""

from __future__ import annotations

from typing import Protocol


class DeliveryError(Exception):
    """The channel refused or failed to deliver a message."""


class Channel(Protocol):
    async def send(self, chat_id: str, text: str, thread_id: int | None = None) -> None:
        """Deliver ``text`` to a chat. Raises DeliveryError on failure."""
        ...

    async def send_approval_prompt(
        self,
        chat_id: str,
        text: str,
        approval_id: str,
        thread_id: int | None = None,
    ) -> None:
        """Deliver an approve/reject prompt bound to ``approval_id``."""
        ...
