"""Kinect control surface. Routes: /startHeight/, /stopHeight/, /getHeight/, /startSkeletal/, /stopSkeletal/, /status/, /reconnectSensor/."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app_state import AppState
from deps import get_state
from modules.session import Mode
from schemas.responses import HeightStatusResponse, StatusResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["tracking"])

_METHODS = ["GET", "POST"]


async def _announce(state: AppState, action: str) -> None:
	if state.notifier is None:
		return
	await state.notifier.publish("control", {"action": action, "patientId": state.session.patient_id})


@router.api_route("/startHeight/", methods=_METHODS, response_model=StatusResponse)
async def start_height(
	patientId: Optional[str] = Query(None, description="Patient to measure; defaults to the active patient"),
	state: AppState = Depends(get_state),
):
	"""Switch to height capture. The next tracked body is measured once, then the session returns to Idle."""
	await state.session.start_height_measurement(patientId)
	await _announce(state, "startHeight")
	return {"status": "Height capturing started"}


@router.api_route("/stopHeight/", methods=_METHODS, response_model=StatusResponse)
async def stop_height(state: AppState = Depends(get_state)):
	"""Stop everything: height capture and skeletal tracking."""
	await state.session.stop_all()
	await _announce(state, "stopHeight")
	return {"status": "All tracking stopped"}


@router.api_route("/getHeight/", methods=_METHODS, response_model=HeightStatusResponse)
async def get_height(state: AppState = Depends(get_state)):
	snap = await state.session.snapshot()
	status = "Measuring" if snap.mode is Mode.MEASURING_HEIGHT else "Idle"
	return {"status": status, "height": snap.last_height}


@router.api_route("/startSkeletal/", methods=_METHODS, response_model=StatusResponse)
async def start_skeletal(
	patientId: Optional[str] = Query(None, description="Patient to track; defaults to the active patient"),
	state: AppState = Depends(get_state),
):
	"""Switch to skeletal tracking; a snapshot is stored every capture interval."""
	await state.session.start_skeletal_tracking(patientId)
	await _announce(state, "startSkeletal")
	return {"status": "Skeletal tracking started"}


@router.api_route("/stopSkeletal/", methods=_METHODS, response_model=StatusResponse)
async def stop_skeletal(state: AppState = Depends(get_state)):
	await state.session.stop_skeletal_tracking()
	await _announce(state, "stopSkeletal")
	return {"status": "Skeletal tracking stopped"}


@router.get("/status/")
async def tracking_status(state: AppState = Depends(get_state)):
	"""Session, sensor, store and push-channel diagnostics."""
	snap = await state.session.snapshot()
	return {
		"session": {
			"mode": snap.mode.value,
			"patientId": snap.patient_id,
			"captureIntervalMs": snap.capture_interval_ms,
			"ticks": snap.ticks,
			"lastHeight": snap.last_height,
			"lastHeightT": snap.last_height_t,
		},
		"sensor": state.sensor.get_status() if state.sensor is not None else None,
		"frames": dict(state.handler.stats) if state.handler is not None else None,
		"store": {**state.store.get_status(), **state.gateway.stats} if state.store is not None else None,
		"notify": state.notifier.get_status() if state.notifier is not None else None,
		"clients": state.manager.client_count if state.manager is not None else 0,
	}


@router.api_route("/reconnectSensor/", methods=_METHODS, response_model=StatusResponse)
async def reconnect_sensor(state: AppState = Depends(get_state)):
	"""Manual sensor reconnect, e.g. after automatic recovery gave up."""
	started = await state.sensor.manual_reconnect()
	if not started:
		return {"status": "Sensor reconnect already in progress"}
	logger.info("[Sensor] manual reconnect requested")
	return {"status": "Sensor reconnect started"}
