from __future__ import annotations

import asyncio
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

from modules.store.base import DocumentStore, StoreError

logger = logging.getLogger(__name__)


class FirebaseRestStore(DocumentStore):
	"""
	Firebase Realtime Database over its REST API (`<root>/<path>.json`).

	Requests are blocking urllib calls pushed to the default executor so the event loop
	(and with it frame handling) never waits on the network.
	"""

	def __init__(self, base_url: str, auth_token: str = "", timeout_s: float = 5.0) -> None:
		self._base = base_url.rstrip("/")
		self._auth = auth_token or ""
		self._timeout_s = float(timeout_s) if timeout_s > 0 else 5.0
		self._requests = 0
		self._failures = 0
		self._last_error: Optional[str] = None

	def name(self) -> str:
		return "firebase"

	def _url(self, path: str) -> str:
		url = f"{self._base}/{urllib.parse.quote(path.strip('/'), safe='/')}.json"
		if self._auth:
			url += "?" + urllib.parse.urlencode({"auth": self._auth})
		return url

	def _request(self, method: str, path: str, body: Optional[bytes] = None) -> Any:
		req = urllib.request.Request(self._url(path), method=method, data=body)
		if body is not None:
			req.add_header("Content-Type", "application/json")
		self._requests += 1
		try:
			with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
				raw = resp.read()
		except urllib.error.HTTPError as e:
			self._failures += 1
			self._last_error = f"HTTP {e.code} on {method} {path}"
			raise StoreError(self._last_error, retryable=e.code >= 500 or e.code == 429, status=e.code) from e
		except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
			self._failures += 1
			self._last_error = f"{method} {path} failed: {e!r}"
			raise StoreError(self._last_error, retryable=True) from e
		if not raw:
			return None
		try:
			return json.loads(raw.decode("utf-8"))
		except ValueError as e:
			self._failures += 1
			self._last_error = f"invalid JSON from {method} {path}"
			raise StoreError(self._last_error, retryable=False) from e

	async def _run(self, method: str, path: str, body: Optional[bytes] = None) -> Any:
		loop = asyncio.get_running_loop()
		return await loop.run_in_executor(None, self._request, method, path, body)

	async def put(self, path: str, value: Any) -> None:
		body = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
		await self._run("PUT", path, body)

	async def get(self, path: str) -> Any:
		return await self._run("GET", path)

	async def delete(self, path: str) -> None:
		await self._run("DELETE", path)

	def get_status(self) -> Dict[str, Any]:
		return {
			"backend": self.name(),
			"url": self._base,
			"requests": int(self._requests),
			"failures": int(self._failures),
			"last_error": self._last_error,
		}
