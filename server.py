"""
Kinect skeletal-tracking relay.

Two processes share this module:

- `serve` (default): control surface + sensor + persistence, push events to local /ws
  subscribers or, when broadcaster.notify_url is set, to a separate broadcaster.
- `broadcaster`: only /ws and /notify; re-emits every posted {type, data} event verbatim.

Run: python server.py serve --config config.json
"""
import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app_state import AppState
from modules import __version__
from modules.config import AppConfig, get_config, set_config_path
from modules.frame_handler import FrameEventHandler
from modules.geometry import HeightCalibration
from modules.notifier import get_notifier
from modules.persistence import PersistenceGateway
from modules.recovery import RecoveryStatus
from modules.sensor import SensorDevice, get_sensor
from modules.sensor_bridge import SensorBridge
from modules.session import TrackingSession
from modules.store import DocumentStore, get_store
from routers import api_patients, pages, tracking, ws
from routers.ws import ConnectionManager

logger = logging.getLogger(__name__)

# UI directory path
UI_DIR = Path(__file__).parent / "UI"


def load_html_template(filename: str) -> str:
	"""
	Load an HTML template file from the UI directory.

	Raises:
		FileNotFoundError: If the file doesn't exist
	"""
	file_path = UI_DIR / filename
	if not file_path.exists():
		raise FileNotFoundError(f"UI template not found: {file_path}")
	with open(file_path, "r", encoding="utf-8") as f:
		return f.read()


def _add_cors(app: FastAPI) -> None:
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)


def create_app(
	cfg: Optional[AppConfig] = None,
	*,
	sensor_factory: Optional[Callable[[], SensorDevice]] = None,
	store: Optional[DocumentStore] = None,
	sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> FastAPI:
	"""
	Build the relay app. `sensor_factory`, `store` and `sleep` override the configured
	driver, store and recovery backoff clock (tests, bench setups without a Kinect).
	"""
	app_state = AppState()
	app_state.manager = ConnectionManager()
	app_state.get_page_html = load_html_template
	app_state.UI_DIR = UI_DIR

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		conf = cfg or get_config()
		app_state.cfg = conf
		app_state.store = store if store is not None else get_store(conf)
		app_state.gateway = PersistenceGateway(app_state.store, timeout_s=conf.store.timeout_seconds)
		app_state.notifier = get_notifier(app_state.manager, conf)
		app_state.session = TrackingSession(
			conf.tracking.default_patient_id,
			capture_interval_ms=conf.tracking.capture_interval_ms,
		)
		app_state.handler = FrameEventHandler(
			app_state.session,
			app_state.gateway,
			notifier=app_state.notifier,
			calibration=HeightCalibration.from_config(conf.height),
		)

		async def _on_recovery_status(status: RecoveryStatus, info: Dict[str, Any]) -> None:
			await app_state.notifier.publish("sensor", {"status": status.value, **info})

		factory = sensor_factory or (lambda: get_sensor(conf))
		app_state.sensor = SensorBridge(
			factory,
			app_state.handler,
			queue_size=conf.sensor.frame_queue_size,
			max_retries=conf.recovery.max_retries,
			base_delay_s=conf.recovery.base_delay_seconds,
			sleep=sleep,
			on_recovery_status=_on_recovery_status,
		)
		app_state.session.set_stream_provider(app_state.sensor.ensure_stream)

		if not await app_state.sensor.start():
			logger.warning("[Sensor] no frame stream at startup; recovery is retrying in the background")
		logger.info(
			"[Server] relay %s ready (store=%s, notify=%s, patient=%s)",
			__version__,
			app_state.store.name(),
			app_state.notifier.name(),
			app_state.session.patient_id,
		)
		try:
			yield
		finally:
			await app_state.session.stop_all()
			await app_state.sensor.stop()
			try:
				await app_state.store.close()
			except Exception as e:
				logger.warning("[Store] close failed: %r", e)
			logger.info("[Server] relay stopped")

	app = FastAPI(title="Kinect relay", version=__version__, lifespan=lifespan)
	app.state.state = app_state
	_add_cors(app)
	app.include_router(tracking.router)
	app.include_router(api_patients.router)
	app.include_router(pages.router)
	app.include_router(ws.router)
	return app


def create_broadcaster_app() -> FastAPI:
	"""Standalone push broadcaster: /ws subscribers, /notify publishers."""
	app_state = AppState()
	app_state.manager = ConnectionManager()
	app = FastAPI(title="Kinect relay broadcaster", version=__version__)
	app.state.state = app_state
	_add_cors(app)
	app.include_router(ws.router)
	return app


def main(argv: Optional[list[str]] = None) -> int:
	p = argparse.ArgumentParser(description="Kinect skeletal-tracking relay")
	p.add_argument("--config", default=None, help="Path to config.json (default: repo root)")
	p.add_argument("--log-level", default="INFO", help="DEBUG / INFO / WARNING / ERROR")
	sub = p.add_subparsers(dest="command")
	for name, help_text in (("serve", "Run the tracking relay"), ("broadcaster", "Run the push broadcaster")):
		sp = sub.add_parser(name, help=help_text)
		sp.add_argument("--host", default=None, help="Bind host (default from config)")
		sp.add_argument("--port", type=int, default=None, help="Bind port (default from config)")
	args = p.parse_args(argv)

	logging.basicConfig(
		level=getattr(logging, str(args.log_level).upper(), logging.INFO),
		format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
	)
	if args.config:
		set_config_path(args.config)
	cfg = get_config()

	import uvicorn

	command = args.command or "serve"
	if command == "broadcaster":
		host = getattr(args, "host", None) or cfg.broadcaster.host
		port = getattr(args, "port", None) or cfg.broadcaster.port
		application = create_broadcaster_app()
	else:
		host = getattr(args, "host", None) or cfg.server.host
		port = getattr(args, "port", None) or cfg.server.port
		application = create_app(cfg)
	try:
		uvicorn.run(application, host=host, port=int(port))
		return 0
	except KeyboardInterrupt:
		return 0


app = create_app()


if __name__ == "__main__":
	raise SystemExit(main())
