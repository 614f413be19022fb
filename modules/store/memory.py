from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List

from modules.store.base import DocumentStore


def _split(path: str) -> List[str]:
	return [p for p in str(path).strip("/").split("/") if p]


class MemoryStore(DocumentStore):
	"""
	In-process nested-dict store with the same path semantics as the Firebase tree.
	Used when no store URL is configured, and in tests.
	"""

	def __init__(self) -> None:
		self._root: Dict[str, Any] = {}
		self._lock = asyncio.Lock()
		self._writes = 0

	def name(self) -> str:
		return "memory"

	async def put(self, path: str, value: Any) -> None:
		keys = _split(path)
		async with self._lock:
			self._writes += 1
			if not keys:
				self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
				return
			cur = self._root
			for k in keys[:-1]:
				nxt = cur.get(k)
				if not isinstance(nxt, dict):
					nxt = {}
					cur[k] = nxt
				cur = nxt
			if value is None:
				cur.pop(keys[-1], None)
			else:
				cur[keys[-1]] = copy.deepcopy(value)

	async def get(self, path: str) -> Any:
		async with self._lock:
			return copy.deepcopy(self._lookup(_split(path)))

	async def delete(self, path: str) -> None:
		await self.put(path, None)

	def _lookup(self, keys: List[str]) -> Any:
		cur: Any = self._root
		for k in keys:
			if not isinstance(cur, dict):
				return None
			cur = cur.get(k)
			if cur is None:
				return None
		return cur

	def dump(self) -> Dict[str, Any]:
		return copy.deepcopy(self._root)

	def get_status(self) -> Dict[str, Any]:
		return {"backend": self.name(), "writes": int(self._writes), "patients": len(self._root.get("patients") or {})}
