# ispy/api/websockets.py
import logging
from typing import Any, Dict, List
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from ispy.core.exceptions import GameNotFoundError
from ispy.models.events import parse_user_event
from ispy.services import session_service

logger = logging.getLogger("ispy.api.websockets")  # Logger for this module
router = APIRouter()


class GameConnectionManager:
    def __init__(self):
        # game_id -> open sockets watching that game
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, game_id: str):
        await websocket.accept()
        self.active_connections.setdefault(game_id, []).append(websocket)
        logger.info(f"WS connected to game {game_id}. Connections: {len(self.active_connections[game_id])}")

    def disconnect(self, game_id: str, websocket: WebSocket):
        connections = self.active_connections.get(game_id)
        if connections and websocket in connections:
            connections.remove(websocket)
            logger.info(f"WS removed from game {game_id}. Connections left: {len(connections)}")
            if not connections:
                del self.active_connections[game_id]

    async def _send_json_safe(self, connection: WebSocket, message: dict, game_id: str):
        try:
            if connection.client_state == WebSocketState.CONNECTED:
                await connection.send_json(message)
            else:
                logger.warning(f"WS for G:{game_id} was already closed before sending {message.get('type')}. Disconnecting from manager.")
                self.disconnect(game_id, connection)
        except Exception as e:
            logger.exception(f"Error sending message to a socket of game {game_id}: {e}. Disconnecting.")
            self.disconnect(game_id, connection)

    def listener_for(self, game_id: str, websocket: WebSocket):
        """Session listener that forwards snapshots and presentation commands to one socket."""
        async def forward(message_type: str, payload: Dict[str, Any]):
            await self._send_json_safe(websocket, {"type": message_type, "payload": payload}, game_id)
        return forward


game_manager = GameConnectionManager()


@router.websocket("/ws/game/{game_id}")
async def game_websocket_endpoint(websocket: WebSocket, game_id: str):
    try:
        session = session_service.get_game(game_id)
    except GameNotFoundError:
        logger.warning(f"WS connection attempt for unknown game {game_id}.")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Game not found")
        return

    await game_manager.connect(websocket, game_id)
    listener = game_manager.listener_for(game_id, websocket)
    session.add_listener(listener)
    try:
        await websocket.send_json({"type": "snapshot", "payload": session.snapshot.public_dump()})
        while True:
            data = await websocket.receive_json()
            try:
                event = parse_user_event(data)
            except ValidationError as e:
                logger.warning(f"G:{game_id} - Invalid event over WS: {e.error_count()} errors")
                await websocket.send_json({"type": "error", "payload": {"message": "Invalid event", "errors": e.errors(include_url=False, include_context=False)}})
                continue
            await session.dispatch(event)
    except WebSocketDisconnect:
        logger.info(f"WS disconnected from game {game_id}.")
    except Exception as e:
        logger.exception(f"Unexpected error in WS for game {game_id}: {type(e).__name__} - {e}")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        session.remove_listener(listener)
        game_manager.disconnect(game_id, websocket)
