from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class AgentClient(Protocol):
    """An open application instance. aiohttp's WebSocketResponse satisfies this."""

    async def send_json(self, data: Any) -> None:
        ...


class ClientNotifier:
    def __init__(self) -> None:
        self._clients: list[AgentClient] = []

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self, client: AgentClient) -> None:
        if client not in self._clients:
            self._clients.append(client)
            logger.debug("Client registered. clients=%d", len(self._clients))

    def unregister(self, client: AgentClient) -> None:
        if client in self._clients:
            self._clients.remove(client)
            logger.debug("Client unregistered. clients=%d", len(self._clients))

    async def broadcast(self, message_type: str, **data: Any) -> int:
        """Send ``{"type": message_type, **data}`` to every client; returns the delivery count."""
        message = {"type": message_type, **data}
        delivered = 0
        for client in list(self._clients):
            try:
                await client.send_json(message)
                delivered += 1
            except (ConnectionError, RuntimeError) as e:
                # Closed websockets raise ConnectionResetError/RuntimeError on send.
                logger.warning("Dropping unreachable client. type=%s error=%s", message_type, e)
                self.unregister(client)
        logger.debug("Broadcast sent. type=%s delivered=%d", message_type, delivered)
        return delivered
