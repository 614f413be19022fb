from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from modules.geometry import HeightCalibration, InvalidMeasurementError, calculate_height
from modules.notifier import Notifier
from modules.persistence import PersistenceGateway
from modules.sensor.types import Body, SkeletonFrame
from modules.session import Mode, TrackingSession

logger = logging.getLogger(__name__)


def extract_joint_positions(body: Body) -> Dict[str, Dict[str, Any]]:
	return {name: joint.to_dict() for name, joint in body.joints.items()}


class FrameEventHandler:
	"""
	Turns one sensor frame into a session-aware action:

	- Idle: nothing.
	- MeasuringHeight: measure the first tracked body once, store it, revert to Idle.
	- TrackingSkeletal: when a capture tick is pending, store every joint of the first
	  tracked body as a snapshot and push it to subscribers.

	Only the first tracked body is used; the relay follows a single patient.
	"""

	def __init__(
		self,
		session: TrackingSession,
		gateway: PersistenceGateway,
		notifier: Optional[Notifier] = None,
		calibration: Optional[HeightCalibration] = None,
	) -> None:
		self.session = session
		self.gateway = gateway
		self.notifier = notifier
		self.calibration = calibration or HeightCalibration()
		self.stats: Dict[str, Any] = {
			"frames": 0,
			"frames_idle": 0,
			"frames_no_body": 0,
			"heights_stored": 0,
			"heights_rejected": 0,
			"heights_failed": 0,
			"snapshots_stored": 0,
			"snapshots_failed": 0,
			"last_frame_t": None,
		}

	def _bump(self, key: str) -> None:
		self.stats[key] = int(self.stats.get(key, 0)) + 1

	async def handle_frame(self, frame: SkeletonFrame) -> None:
		self._bump("frames")
		self.stats["last_frame_t"] = frame.t_host
		snap = await self.session.snapshot()
		if snap.mode is Mode.IDLE:
			self._bump("frames_idle")
			return

		body = frame.first_tracked()
		if body is None:
			self._bump("frames_no_body")
			logger.debug("[Frame] no body tracked")
			return

		if snap.mode is Mode.MEASURING_HEIGHT:
			await self._measure_height(body)
		elif snap.mode is Mode.TRACKING_SKELETAL:
			await self._capture_skeleton(body)

	async def _measure_height(self, body: Body) -> None:
		claim = await self.session.claim_height_measurement()
		if claim is None:
			return
		try:
			height = calculate_height(body, self.calibration)
		except InvalidMeasurementError as e:
			self._bump("heights_rejected")
			logger.warning("[Frame] height rejected for %s: %s", claim.patient_id, e)
			await self.session.finish_height_measurement(claim, None)
			return

		logger.info("[Frame] height %.2f m for %s", height, claim.patient_id)
		if not await self.gateway.write_height(claim.patient_id, height):
			self._bump("heights_failed")
			logger.warning("[Frame] height for %s not stored; measurement ends without retry", claim.patient_id)
			await self.session.finish_height_measurement(claim, None)
			return

		self._bump("heights_stored")
		await self.session.finish_height_measurement(claim, height)
		await self._publish("height", {"patientId": claim.patient_id, "height": height})

	async def _capture_skeleton(self, body: Body) -> None:
		patient_id = await self.session.claim_skeletal_capture()
		if patient_id is None:
			return
		joints = extract_joint_positions(body)
		timestamp = self.gateway.next_timestamp_ms(patient_id, now=time.time())
		if not await self.gateway.write_skeletal_snapshot(patient_id, timestamp, joints):
			self._bump("snapshots_failed")
			return
		self._bump("snapshots_stored")
		await self._publish("skeletal", {"patientId": patient_id, "timestamp": timestamp, "joints": joints})

	async def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
		if self.notifier is None:
			return
		await self.notifier.publish(event_type, data)
