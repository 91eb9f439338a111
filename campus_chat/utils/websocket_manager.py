from typing import Dict, List, Tuple

from fastapi import WebSocket


class ConnectionManager:
    """Open chat sockets per (conversation, user); one user may have several tabs."""

    def __init__(self) -> None:
        self.active_connections: Dict[Tuple[str, str], List[WebSocket]] = {}

    async def connect(self, conversation_id: str, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        key = (conversation_id, user_id)
        if key not in self.active_connections:
            self.active_connections[key] = []
        self.active_connections[key].append(websocket)

    def disconnect(self, conversation_id: str, user_id: str, websocket: WebSocket) -> bool:
        """Forget a socket. True when it was the user's last one in the conversation."""
        key = (conversation_id, user_id)
        if key not in self.active_connections:
            return False
        try:
            self.active_connections[key].remove(websocket)
        except ValueError:
            pass
        if not self.active_connections[key]:
            del self.active_connections[key]
            return True
        return False
