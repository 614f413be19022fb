"""Remote document store adapters (Firebase Realtime Database REST, in-memory fallback)."""

import logging
from typing import Optional

from modules.config import AppConfig, get_config
from modules.store.base import DocumentStore, StoreError, join_path, safe_key

logger = logging.getLogger(__name__)


def get_store(cfg: Optional[AppConfig] = None) -> DocumentStore:
	cfg = cfg or get_config()
	url = (cfg.store.url or "").strip()
	if not url:
		from modules.store.memory import MemoryStore

		logger.warning("[Store] store.url not set in config.json; results are kept in memory only.")
		return MemoryStore()

	from modules.store.firebase_rest import FirebaseRestStore

	return FirebaseRestStore(url, auth_token=cfg.store.auth_token, timeout_s=cfg.store.timeout_seconds)


__all__ = ["DocumentStore", "StoreError", "get_store", "join_path", "safe_key"]
