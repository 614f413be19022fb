from __future__ import annotations

import logging
import math
import random
import threading
import time
from typing import Any, Dict, Optional, Tuple

from modules.sensor.base import DeviceUnavailableError, ErrorCallback, FrameCallback, SensorDevice
from modules.sensor.types import JOINT_NAMES, Body, Joint, SkeletonFrame, TrackingState

logger = logging.getLogger(__name__)

# (x offset in meters, height as a fraction of the head-to-foot span, z offset in meters)
_STANDING_POSE: Dict[str, Tuple[float, float, float]] = {
	"SpineBase": (0.0, 0.54, 0.0),
	"SpineMid": (0.0, 0.72, 0.0),
	"Neck": (0.0, 0.90, 0.0),
	"Head": (0.0, 1.00, 0.0),
	"ShoulderLeft": (-0.19, 0.85, 0.0),
	"ElbowLeft": (-0.24, 0.66, 0.0),
	"WristLeft": (-0.26, 0.50, 0.0),
	"HandLeft": (-0.26, 0.46, 0.0),
	"ShoulderRight": (0.19, 0.85, 0.0),
	"ElbowRight": (0.24, 0.66, 0.0),
	"WristRight": (0.26, 0.50, 0.0),
	"HandRight": (0.26, 0.46, 0.0),
	"HipLeft": (-0.09, 0.53, 0.0),
	"KneeLeft": (-0.10, 0.28, 0.0),
	"AnkleLeft": (-0.10, 0.04, 0.0),
	"FootLeft": (-0.11, 0.00, -0.10),
	"HipRight": (0.09, 0.53, 0.0),
	"KneeRight": (0.10, 0.28, 0.0),
	"AnkleRight": (0.10, 0.04, 0.0),
	"FootRight": (0.11, 0.00, -0.10),
	"SpineShoulder": (0.0, 0.86, 0.0),
	"HandTipLeft": (-0.26, 0.42, 0.0),
	"ThumbLeft": (-0.24, 0.45, -0.02),
	"HandTipRight": (0.26, 0.42, 0.0),
	"ThumbRight": (0.24, 0.45, -0.02),
}

# The head joint sits at the centre of the head, roughly 13% of stature below the crown.
_HEAD_JOINT_RATIO = 0.87


class SimulatedSensor(SensorDevice):
	"""
	Stand-in body tracker: one person standing in front of the sensor with a little sway.

	Useful for running the whole relay (form, dashboard, store) on a machine without a Kinect.
	"""

	def __init__(
		self,
		subject_height_m: float = 1.72,
		fps: float = 30.0,
		distance_m: float = 2.5,
		floor_y_m: float = -0.95,
		seed: Optional[int] = None,
	) -> None:
		self._lock = threading.Lock()
		self._height_m = float(subject_height_m)
		self._fps = float(fps) if fps > 0 else 30.0
		self._distance_m = float(distance_m)
		self._floor_y = float(floor_y_m)
		self._rng = random.Random(seed)
		self._open = False
		self._running = False
		self._thread: Optional[threading.Thread] = None
		self._on_frame: Optional[FrameCallback] = None
		self._on_error: Optional[ErrorCallback] = None
		self._frames = 0
		self._t_last_frame: Optional[float] = None

	def name(self) -> str:
		return "simulated"

	def open(self) -> None:
		with self._lock:
			self._open = True
		logger.info("[Sensor] simulated sensor opened (subject %.2f m)", self._height_m)

	def close(self) -> None:
		self.unsubscribe()
		with self._lock:
			self._open = False

	def subscribe(self, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
		with self._lock:
			if not self._open:
				raise DeviceUnavailableError("Simulated sensor is not open")
			if self._running:
				return
			self._on_frame = on_frame
			self._on_error = on_error
			self._running = True
		t = threading.Thread(target=self._run_loop, name="simulated-body-frames", daemon=True)
		self._thread = t
		t.start()

	def unsubscribe(self) -> None:
		with self._lock:
			self._running = False
		t = self._thread
		if t and t.is_alive() and t is not threading.current_thread():
			t.join(timeout=2.0)
		self._thread = None

	def is_open(self) -> bool:
		with self._lock:
			return bool(self._open)

	def is_subscribed(self) -> bool:
		with self._lock:
			return bool(self._running)

	def get_status(self) -> Dict[str, Any]:
		with self._lock:
			return {
				"backend": self.name(),
				"open": bool(self._open),
				"subscribed": bool(self._running),
				"frames": int(self._frames),
				"t_last_frame": self._t_last_frame,
				"subject_height_m": self._height_m,
			}

	def make_frame(self, t: Optional[float] = None) -> SkeletonFrame:
		t_host = float(t) if t is not None else time.time()
		span = self._height_m * _HEAD_JOINT_RATIO
		sway = 0.02 * math.sin(t_host * 0.8)
		joints: Dict[str, Joint] = {}
		for name in JOINT_NAMES:
			dx, fy, dz = _STANDING_POSE[name]
			feet = name.startswith("Foot") or name.startswith("Ankle")
			jitter = 0.0 if feet or name == "Head" else self._rng.uniform(-0.004, 0.004)
			joints[name] = Joint(
				name=name,
				x=dx + (0.0 if feet else sway),
				y=self._floor_y + fy * span + jitter,
				z=self._distance_m + dz,
				state=TrackingState.TRACKED,
			)
		body = Body(tracking_id=72057594037928000, is_tracked=True, joints=joints)
		return SkeletonFrame(t_host=t_host, bodies=[Body(tracking_id=0, is_tracked=False), body])

	def _run_loop(self) -> None:
		period = 1.0 / self._fps
		while True:
			with self._lock:
				if not self._running:
					return
				on_frame = self._on_frame
			frame = self.make_frame()
			with self._lock:
				self._frames += 1
				self._t_last_frame = frame.t_host
			if on_frame is not None:
				try:
					on_frame(frame)
				except Exception as e:
					logger.warning("[Sensor] frame callback raised: %r", e)
			time.sleep(period)
