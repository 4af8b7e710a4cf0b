"""
Messaging: Action-Keyed Dispatch Between Contexts

Contexts never share objects; they exchange plain dict messages carrying an
``action`` field. Each context owns a MessageRouter and exposes its
``dispatch`` as the send function other contexts hold.

Handlers return the response dict of their contract. Unknown actions and
unexpected handler failures come back as ``{"success": False, "error": ...}``.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
Handler = Callable[[Message], Awaitable[Message]]
Send = Callable[[Message], Awaitable[Message]]


class MessageRouter:
    """
    Routes messages to handlers by ``action``.

    Usage:
        router = MessageRouter("background")
        router.register("downloadFiles", on_download_files)
        response = await router.dispatch({"action": "downloadFiles", "files": [...]})
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        self._handlers[action] = handler

    @property
    def actions(self) -> list:
        return sorted(self._handlers)

    def handles(self, action: str) -> bool:
        return action in self._handlers

    async def dispatch(self, message: Message) -> Message:
        action = message.get("action") if isinstance(message, dict) else None
        handler = self._handlers.get(action) if action else None
        if handler is None:
            logger.warning(f"[MSG] {self.name}: unknown action {action!r}")
            return {"success": False, "error": f"Unknown action: {action}"}

        logger.debug(f"[MSG] {self.name} <- {action}")
        try:
            return await handler(message)
        except Exception as e:
            logger.error(f"[MSG] {self.name}: {action} failed: {e}", exc_info=True)
            return {"success": False, "error": str(e)}
