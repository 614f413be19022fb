"""
Push notifications to dashboard subscribers.

Every event is `{"type": <str>, "data": <json>}`. The in-process notifier broadcasts to the
websocket clients of this server; the HTTP notifier posts to a separate broadcaster
process (`server.py broadcaster`) which fans events out verbatim.
"""
from __future__ import annotations

import asyncio
import json
import logging
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from modules.config import AppConfig, get_config

logger = logging.getLogger(__name__)


def make_event(event_type: str, data: Any) -> Dict[str, Any]:
	return {"type": str(event_type), "data": data}


class Notifier(ABC):
	def __init__(self) -> None:
		self.sent = 0
		self.failed = 0

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	async def _deliver(self, event: Dict[str, Any]) -> None: ...

	async def publish(self, event_type: str, data: Any) -> bool:
		"""Best-effort: failures are logged and reported as False, never raised."""
		event = make_event(event_type, data)
		try:
			await self._deliver(event)
		except Exception as e:
			self.failed += 1
			logger.warning("[Notify] %s event via %s failed: %r", event_type, self.name(), e)
			return False
		self.sent += 1
		return True

	def get_status(self) -> Dict[str, Any]:
		return {"backend": self.name(), "sent": int(self.sent), "failed": int(self.failed)}


class LocalNotifier(Notifier):
	def __init__(self, manager: Any) -> None:
		super().__init__()
		self._manager = manager

	def name(self) -> str:
		return "local"

	async def _deliver(self, event: Dict[str, Any]) -> None:
		await self._manager.broadcast_json(event)


class HttpNotifier(Notifier):
	def __init__(self, base_url: str, timeout_s: float = 2.0) -> None:
		super().__init__()
		self._url = base_url.rstrip("/") + "/notify"
		self._timeout_s = float(timeout_s) if timeout_s > 0 else 2.0

	def name(self) -> str:
		return "http"

	def _post(self, body: bytes) -> None:
		req = urllib.request.Request(self._url, method="POST", data=body, headers={"Content-Type": "application/json"})
		with urllib.request.urlopen(req, timeout=self._timeout_s) as _:
			return

	async def _deliver(self, event: Dict[str, Any]) -> None:
		body = json.dumps(event, separators=(",", ":")).encode("utf-8")
		loop = asyncio.get_running_loop()
		await loop.run_in_executor(None, self._post, body)


def get_notifier(manager: Any, cfg: Optional[AppConfig] = None) -> Notifier:
	cfg = cfg or get_config()
	url = (cfg.broadcaster.notify_url or "").strip()
	if url:
		return HttpNotifier(url, timeout_s=cfg.broadcaster.timeout_seconds)
	return LocalNotifier(manager)
