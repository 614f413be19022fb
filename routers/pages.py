"""HTML page handlers. No path prefix – routes are / and /static/index.html."""
import base64
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from app_state import AppState
from deps import get_state
from modules.store import StoreError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["pages"])

_CONFIG_PLACEHOLDER = "<!-- APP_CONFIG -->"
_PRELOAD_PLACEHOLDER = "<!-- PRELOAD_PATIENTS -->"
_OPTIONS_PLACEHOLDER = "<!-- PATIENT_OPTIONS -->"


def _get_html(state: AppState, filename: str) -> str:
	"""Load page HTML lazily. 404 if UI template missing."""
	if state.get_page_html is None:
		raise HTTPException(status_code=503, detail="Server not ready")
	try:
		return state.get_page_html(filename)
	except FileNotFoundError as e:
		raise HTTPException(status_code=404, detail=str(e)) from e


def _escape_html(s: str) -> str:
	if s is None:
		return ""
	return str(s).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def _b64_script(var: str, value) -> str:
	encoded = base64.b64encode(json.dumps(value).encode("utf-8")).decode("ascii")
	return f'<script>window.{var} = JSON.parse(atob("{encoded}"));</script>'


def client_config(state: AppState) -> dict:
	"""Endpoints the dashboard talks to. Empty URLs mean same origin."""
	cfg = state.cfg
	ws_url = ""
	if cfg is not None and cfg.broadcaster.notify_url:
		base = cfg.broadcaster.notify_url.rstrip("/")
		if base.startswith("https://"):
			ws_url = "wss://" + base[len("https://"):] + "/ws"
		elif base.startswith("http://"):
			ws_url = "ws://" + base[len("http://"):] + "/ws"
	return {
		"controlUrl": "",
		"wsUrl": ws_url,
		"captureIntervalMs": cfg.tracking.capture_interval_ms if cfg is not None else 500,
		"activePatientId": state.session.patient_id if state.session is not None else None,
	}


async def _index_page_html(state: AppState) -> str:
	"""Dashboard HTML with config and registered patients preloaded."""
	html = _get_html(state, "index.html")
	if _CONFIG_PLACEHOLDER in html:
		html = html.replace(_CONFIG_PLACEHOLDER, _b64_script("__APP_CONFIG__", client_config(state)), 1)

	wants_patients = _PRELOAD_PLACEHOLDER in html or _OPTIONS_PLACEHOLDER in html
	patients = []
	if wants_patients and state.gateway is not None:
		try:
			patients = await state.gateway.list_patients()
		except StoreError as e:
			# Page still renders; the client refetches /api/patients.
			logger.warning("[Pages] patient preload failed: %s", e)
	# Server-render options so the selector works even if the client script fails
	if _OPTIONS_PLACEHOLDER in html:
		options_html = "".join(
			f'<option value="{_escape_html(p["id"])}">{_escape_html(p.get("name") or "")}</option>' for p in patients
		)
		html = html.replace(_OPTIONS_PLACEHOLDER, options_html, 1)
	if _PRELOAD_PLACEHOLDER in html:
		html = html.replace(_PRELOAD_PLACEHOLDER, _b64_script("__PRELOADED_PATIENTS__", patients), 1)
	return html


def _page_response(html: str) -> HTMLResponse:
	"""Return HTMLResponse with no-cache so browser always gets fresh preloaded data."""
	return HTMLResponse(content=html, headers={"Cache-Control": "no-store, no-cache, must-revalidate"})


@router.get("/", response_class=HTMLResponse)
async def index(state: AppState = Depends(get_state)):
	return _page_response(await _index_page_html(state))


@router.get("/static/index.html", response_class=HTMLResponse)
async def index_static(state: AppState = Depends(get_state)):
	return _page_response(await _index_page_html(state))
