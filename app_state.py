"""
Explicit app state – single source of truth for runtime lifecycle.
Created in lifespan, attached to app.state.state; injected into routes via Depends(get_state).
"""
from pathlib import Path
from typing import Any, Callable, Optional


class AppState:
	"""
	Holds all runtime objects of one server process. Populated in the server lifespan;
	the broadcaster process only fills `manager`.
	"""
	# WebSocket and UI (set at app load)
	manager: Any = None
	get_page_html: Optional[Callable[[str], str]] = None
	UI_DIR: Optional[Path] = None

	# Config
	cfg: Any = None

	# Tracking core (set in lifespan)
	session: Any = None
	store: Any = None
	gateway: Any = None
	notifier: Any = None
	handler: Any = None
	sensor: Any = None

	def __init__(self) -> None:
		self.manager = None
		self.get_page_html = None
		self.UI_DIR = None
