"""WebSocket fan-out. Routes: /ws (subscribe), /notify (publish {type, data} to every subscriber)."""
import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app_state import AppState
from deps import get_state
from schemas.requests import NotifyPayload

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])


class ConnectionManager:
	def __init__(self) -> None:
		self._clients: Set[WebSocket] = set()
		self._lock = asyncio.Lock()

	@property
	def client_count(self) -> int:
		return len(self._clients)

	async def connect(self, websocket: WebSocket) -> None:
		await websocket.accept()
		async with self._lock:
			self._clients.add(websocket)
		logger.info("[WS] client connected (%d total)", len(self._clients))

	async def disconnect(self, websocket: WebSocket) -> None:
		async with self._lock:
			self._clients.discard(websocket)
		logger.info("[WS] client disconnected (%d total)", len(self._clients))

	async def broadcast_json(self, message: Dict[str, Any]) -> int:
		"""Send message to every client; returns the number of clients it was sent to."""
		payload = json.dumps(message, separators=(",", ":"))
		async with self._lock:
			clients = list(self._clients)
		if not clients:
			return 0
		results = await asyncio.gather(*(self._send(ws, payload) for ws in clients), return_exceptions=True)
		dead = [ws for ws, ok in zip(clients, results) if ok is not True]
		if dead:
			async with self._lock:
				for ws in dead:
					self._clients.discard(ws)
		return len(clients) - len(dead)

	@staticmethod
	async def _send(ws: WebSocket, payload: str) -> bool:
		try:
			await ws.send_text(payload)
			return True
		except Exception:
			try:
				await ws.close()
			except Exception:
				pass
			return False


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket):
	manager: ConnectionManager = websocket.app.state.state.manager
	await manager.connect(websocket)
	try:
		while True:
			# Subscribers only listen; inbound text is ignored.
			await websocket.receive_text()
	except WebSocketDisconnect:
		pass
	except Exception as e:
		logger.debug("[WS] receive loop ended: %r", e)
	finally:
		await manager.disconnect(websocket)


@router.post("/notify")
async def notify_endpoint(payload: NotifyPayload, state: AppState = Depends(get_state)):
	"""Fan a {type, data} event out to all connected subscribers, verbatim."""
	delivered = await state.manager.broadcast_json({"type": payload.type, "data": payload.data})
	return {"detail": "Broadcast", "clients": delivered}
