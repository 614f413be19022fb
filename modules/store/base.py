from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

# Characters Firebase Realtime Database rejects inside a key.
_FORBIDDEN_KEY_CHARS = ".$#[]/"


class StoreError(RuntimeError):
	"""
	A store call failed. `retryable` is True for timeouts, connection errors and 5xx
	responses; False for rejected requests (4xx) that will fail the same way again.
	"""

	def __init__(self, message: str, *, retryable: bool = True, status: Optional[int] = None) -> None:
		super().__init__(message)
		self.retryable = bool(retryable)
		self.status = status


def safe_key(key: str) -> str:
	out = "".join("_" if ch in _FORBIDDEN_KEY_CHARS else ch for ch in str(key))
	return out or "_"


def join_path(*parts: Any) -> str:
	return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))


class DocumentStore(ABC):
	"""
	Path-addressed JSON document store ("patients/F30AL.../height"). No transactions:
	put replaces the value at a path, later writes win.
	"""

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	async def put(self, path: str, value: Any) -> None: ...

	@abstractmethod
	async def get(self, path: str) -> Any:
		"""Return the JSON value at path, or None if nothing is stored there."""
		...

	@abstractmethod
	async def delete(self, path: str) -> None: ...

	@abstractmethod
	def get_status(self) -> Dict[str, Any]: ...

	async def close(self) -> None:
		return None
