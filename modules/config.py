from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class StoreConfig:
	# Firebase Realtime Database root, e.g. "https://<project>-default-rtdb.firebaseio.com/".
	# If empty, results are kept in an in-memory store (nothing survives a restart).
	url: str = ""
	auth_token: str = ""
	timeout_seconds: float = 5.0


@dataclass(frozen=True)
class SensorConfig:
	backend: str = "kinect2"  # kinect2 / simulated
	poll_interval_seconds: float = 1.0 / 30.0
	# How long the device may report unavailable before the driver gives up on the stream.
	unavailable_grace_seconds: float = 2.0
	# Consecutive null body frames, held past the grace period, that also count as sensor loss.
	max_null_frames: int = 30
	frame_queue_size: int = 8
	simulated_height_m: float = 1.72
	simulated_fps: float = 30.0


@dataclass(frozen=True)
class TrackingConfig:
	capture_interval_ms: int = 500
	default_patient_id: str = "temp_patient"
	# Registration through /api/patients makes the new patient the active one.
	select_new_patient: bool = True


@dataclass(frozen=True)
class HeightConfig:
	method: str = "head_foot_span"  # head_foot_span / segment_sum
	# Empirical scale from head-joint span to standing height.
	calibration: float = 1.15
	min_m: float = 1.0
	max_m: float = 2.5


@dataclass(frozen=True)
class RecoveryConfig:
	max_retries: int = 3
	base_delay_seconds: float = 1.0


@dataclass(frozen=True)
class ServerConfig:
	host: str = "127.0.0.1"
	port: int = 5001


@dataclass(frozen=True)
class BroadcasterConfig:
	host: str = "127.0.0.1"
	port: int = 5000
	# If set, push events are POSTed to "<notify_url>/notify" instead of the in-process /ws clients.
	notify_url: str = ""
	timeout_seconds: float = 2.0


@dataclass(frozen=True)
class AppConfig:
	store: StoreConfig = field(default_factory=StoreConfig)
	sensor: SensorConfig = field(default_factory=SensorConfig)
	tracking: TrackingConfig = field(default_factory=TrackingConfig)
	height: HeightConfig = field(default_factory=HeightConfig)
	recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
	server: ServerConfig = field(default_factory=ServerConfig)
	broadcaster: BroadcasterConfig = field(default_factory=BroadcasterConfig)


_CONFIG_PATH: Optional[Path] = None
_CONFIG_CACHE: Optional[AppConfig] = None


def _repo_root() -> Path:
	# modules/config.py -> repo root is one level up.
	return Path(__file__).resolve().parents[1]


def get_default_config_path() -> Path:
	return _repo_root() / "config.json"


def set_config_path(path: str | Path) -> None:
	"""
	Override the config path (must be called before first get_config()).
	Used by the CLI --config flag and by tests.
	"""
	global _CONFIG_PATH
	global _CONFIG_CACHE
	_CONFIG_PATH = Path(path).expanduser().resolve()
	_CONFIG_CACHE = None


def _deep_get(d: Dict[str, Any], keys: list[str], default: Any = None) -> Any:
	cur: Any = d
	for k in keys:
		if not isinstance(cur, dict):
			return default
		cur = cur.get(k)
	return cur if cur is not None else default


def _as_int(v: Any, default: int) -> int:
	try:
		return int(v)
	except Exception:
		return int(default)


def _as_bool(v: Any, default: bool) -> bool:
	if isinstance(v, bool):
		return v
	if isinstance(v, (int, float)):
		return bool(v)
	if isinstance(v, str):
		return v.strip().lower() in ("1", "true", "yes", "on")
	return bool(default)


def _as_str(v: Any, default: str = "") -> str:
	return str(v) if v is not None else str(default)


def _as_float(v: Any, default: float) -> float:
	try:
		return float(v)
	except Exception:
		return float(default)


def _positive(v: float, default: float) -> float:
	return float(v) if float(v) > 0.0 else float(default)


def load_config(path: Optional[str | Path] = None) -> AppConfig:
	p = Path(path).expanduser().resolve() if path else (_CONFIG_PATH or get_default_config_path())
	if not p.exists():
		# Defaults-only config; app can still run.
		return AppConfig()
	try:
		raw = json.loads(p.read_text(encoding="utf-8"))
	except Exception:
		# If config is malformed, fail safe to defaults (but keep app running).
		return AppConfig()

	if not isinstance(raw, dict):
		return AppConfig()

	store_url = _as_str(_deep_get(raw, ["store", "url"], ""), "").strip()
	store_token = _as_str(_deep_get(raw, ["store", "auth_token"], ""), "").strip()
	store_timeout = _as_float(_deep_get(raw, ["store", "timeout_seconds"], 5.0), 5.0)

	s_backend = _as_str(_deep_get(raw, ["sensor", "backend"], "kinect2"), "kinect2").strip().lower()
	s_poll = _as_float(_deep_get(raw, ["sensor", "poll_interval_seconds"], 1.0 / 30.0), 1.0 / 30.0)
	s_grace = _as_float(_deep_get(raw, ["sensor", "unavailable_grace_seconds"], 2.0), 2.0)
	s_nulls = _as_int(_deep_get(raw, ["sensor", "max_null_frames"], 30), 30)
	s_queue = _as_int(_deep_get(raw, ["sensor", "frame_queue_size"], 8), 8)
	s_sim_h = _as_float(_deep_get(raw, ["sensor", "simulated_height_m"], 1.72), 1.72)
	s_sim_fps = _as_float(_deep_get(raw, ["sensor", "simulated_fps"], 30.0), 30.0)

	t_interval = _as_int(_deep_get(raw, ["tracking", "capture_interval_ms"], 500), 500)
	t_patient = _as_str(_deep_get(raw, ["tracking", "default_patient_id"], "temp_patient"), "temp_patient").strip()
	t_select = _as_bool(_deep_get(raw, ["tracking", "select_new_patient"], True), True)

	h_method = _as_str(_deep_get(raw, ["height", "method"], "head_foot_span"), "head_foot_span").strip().lower()
	if h_method not in ("head_foot_span", "segment_sum"):
		h_method = "head_foot_span"
	h_cal = _as_float(_deep_get(raw, ["height", "calibration"], 1.15), 1.15)
	h_min = _as_float(_deep_get(raw, ["height", "min_m"], 1.0), 1.0)
	h_max = _as_float(_deep_get(raw, ["height", "max_m"], 2.5), 2.5)
	if h_max <= h_min:
		h_min, h_max = 1.0, 2.5

	r_retries = _as_int(_deep_get(raw, ["recovery", "max_retries"], 3), 3)
	r_base = _as_float(_deep_get(raw, ["recovery", "base_delay_seconds"], 1.0), 1.0)

	srv_host = _as_str(_deep_get(raw, ["server", "host"], "127.0.0.1"), "127.0.0.1")
	srv_port = _as_int(_deep_get(raw, ["server", "port"], 5001), 5001)

	b_host = _as_str(_deep_get(raw, ["broadcaster", "host"], "127.0.0.1"), "127.0.0.1")
	b_port = _as_int(_deep_get(raw, ["broadcaster", "port"], 5000), 5000)
	b_url = _as_str(_deep_get(raw, ["broadcaster", "notify_url"], ""), "").strip()
	b_timeout = _as_float(_deep_get(raw, ["broadcaster", "timeout_seconds"], 2.0), 2.0)

	return AppConfig(
		store=StoreConfig(url=store_url, auth_token=store_token, timeout_seconds=_positive(store_timeout, 5.0)),
		sensor=SensorConfig(
			backend=s_backend or "kinect2",
			poll_interval_seconds=_positive(s_poll, 1.0 / 30.0),
			unavailable_grace_seconds=max(0.0, float(s_grace)),
			max_null_frames=int(s_nulls) if int(s_nulls) > 0 else 30,
			frame_queue_size=int(s_queue) if int(s_queue) > 0 else 8,
			simulated_height_m=_positive(s_sim_h, 1.72),
			simulated_fps=_positive(s_sim_fps, 30.0),
		),
		tracking=TrackingConfig(
			capture_interval_ms=int(t_interval) if int(t_interval) > 0 else 500,
			default_patient_id=t_patient or "temp_patient",
			select_new_patient=t_select,
		),
		height=HeightConfig(
			method=h_method,
			calibration=_positive(h_cal, 1.15),
			min_m=float(h_min),
			max_m=float(h_max),
		),
		recovery=RecoveryConfig(
			max_retries=max(0, int(r_retries)),
			base_delay_seconds=max(0.0, float(r_base)),
		),
		server=ServerConfig(host=srv_host, port=int(srv_port) if int(srv_port) > 0 else 5001),
		broadcaster=BroadcasterConfig(
			host=b_host,
			port=int(b_port) if int(b_port) > 0 else 5000,
			notify_url=b_url,
			timeout_seconds=_positive(b_timeout, 2.0),
		),
	)


def get_config() -> AppConfig:
	global _CONFIG_CACHE
	if _CONFIG_CACHE is None:
		_CONFIG_CACHE = load_config()
	return _CONFIG_CACHE
