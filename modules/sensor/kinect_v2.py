from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from modules.sensor.base import DeviceUnavailableError, ErrorCallback, FrameCallback, SensorDevice
from modules.sensor.types import JOINT_NAMES, Body, Joint, SkeletonFrame, TrackingState

logger = logging.getLogger(__name__)

# PyKinectV2.TrackingState_* values.
_TRACKING_STATES = {
	0: TrackingState.NOT_TRACKED,
	1: TrackingState.INFERRED,
	2: TrackingState.TRACKED,
}


class KinectV2Sensor(SensorDevice):
	"""
	Kinect for Windows v2 body tracker via `pykinect2`.

	Notes:
	- The runtime is polled on a daemon thread; has_new_body_frame() is the frame-arrived signal.
	- `pykinect2` only works on Windows with the Kinect SDK 2.0; import failures surface as
	  DeviceUnavailableError so the recovery path handles them like an unplugged sensor.
	"""

	def __init__(
		self,
		poll_interval_s: float = 1.0 / 30.0,
		unavailable_grace_s: float = 2.0,
		max_null_frames: int = 30,
	) -> None:
		self._lock = threading.Lock()
		self._poll_interval_s = float(poll_interval_s) if poll_interval_s > 0 else 1.0 / 30.0
		self._grace_s = max(0.0, float(unavailable_grace_s))
		self._max_null_frames = max(1, int(max_null_frames))
		self._runtime = None
		self._kinect = None
		self._thread: Optional[threading.Thread] = None
		self._running = False
		self._on_frame: Optional[FrameCallback] = None
		self._on_error: Optional[ErrorCallback] = None
		self._frames = 0
		self._null_frames = 0
		self._t_last_frame: Optional[float] = None
		self._last_error: Optional[str] = None

	def name(self) -> str:
		return "kinect2"

	def open(self) -> None:
		with self._lock:
			if self._runtime is not None:
				return
		try:
			from pykinect2 import PyKinectRuntime, PyKinectV2  # type: ignore
		except Exception as e:
			self._last_error = f"pykinect2 import failed: {e!r}"
			raise DeviceUnavailableError(self._last_error) from e
		try:
			runtime = PyKinectRuntime.PyKinectRuntime(PyKinectV2.FrameSourceTypes_Body)
		except Exception as e:
			self._last_error = f"Kinect runtime init failed: {e!r}"
			raise DeviceUnavailableError(self._last_error) from e
		with self._lock:
			self._runtime = runtime
			self._kinect = PyKinectV2
			self._last_error = None
		logger.info("[Sensor] Kinect v2 opened")

	def close(self) -> None:
		self.unsubscribe()
		with self._lock:
			runtime = self._runtime
			self._runtime = None
		if runtime is not None:
			try:
				runtime.close()
			except Exception as e:
				logger.warning("[Sensor] Kinect runtime close failed: %r", e)

	def subscribe(self, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
		with self._lock:
			if self._runtime is None:
				raise DeviceUnavailableError("Kinect is not open")
			if self._running:
				return
			self._on_frame = on_frame
			self._on_error = on_error
			self._running = True
		t = threading.Thread(target=self._run_poll_loop, name="kinect-body-frames", daemon=True)
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
			return self._runtime is not None

	def is_subscribed(self) -> bool:
		with self._lock:
			return bool(self._running)

	def get_status(self) -> Dict[str, Any]:
		with self._lock:
			return {
				"backend": self.name(),
				"open": self._runtime is not None,
				"subscribed": bool(self._running),
				"frames": int(self._frames),
				"null_frames": int(self._null_frames),
				"t_last_frame": self._t_last_frame,
				"error": self._last_error,
			}

	def _sensor_available(self) -> bool:
		runtime = self._runtime
		if runtime is None:
			return False
		try:
			return bool(runtime._sensor.IsAvailable)
		except Exception:
			# Older pykinect2 builds do not expose IsAvailable; rely on frame flow instead.
			return True

	def _run_poll_loop(self) -> None:
		unavailable_since: Optional[float] = None
		null_since: Optional[float] = None
		null_run = 0
		while True:
			with self._lock:
				if not self._running:
					return
				runtime = self._runtime
				on_frame = self._on_frame
			try:
				if runtime is not None and runtime.has_new_body_frame():
					body_frame = runtime.get_last_body_frame()
					if body_frame is None:
						with self._lock:
							self._null_frames += 1
						null_run += 1
						if null_since is None:
							null_since = time.monotonic()
						# A run of null acquisitions counts as device loss once it outlasts the grace period.
						if null_run >= self._max_null_frames and time.monotonic() - null_since >= self._grace_s:
							raise DeviceUnavailableError(f"Kinect returned {null_run} null body frames in a row")
					else:
						null_run = 0
						null_since = None
						frame = self._convert(body_frame, int(runtime.max_body_count))
						with self._lock:
							self._frames += 1
							self._t_last_frame = frame.t_host
						if on_frame is not None:
							on_frame(frame)
				if self._sensor_available():
					unavailable_since = None
				else:
					now = time.monotonic()
					if unavailable_since is None:
						unavailable_since = now
					elif now - unavailable_since >= self._grace_s:
						raise DeviceUnavailableError("Kinect sensor reports unavailable")
			except Exception as e:
				self._fail(e)
				return
			time.sleep(self._poll_interval_s)

	def _fail(self, err: BaseException) -> None:
		with self._lock:
			self._running = False
			self._last_error = repr(err)
			on_error = self._on_error
		logger.warning("[Sensor] Kinect stream stopped: %r", err)
		if on_error is not None:
			if not isinstance(err, DeviceUnavailableError):
				wrapped = DeviceUnavailableError(f"Kinect stream error: {err!r}")
				wrapped.__cause__ = err
				err = wrapped
			on_error(err)

	def _convert(self, body_frame: Any, body_count: int) -> SkeletonFrame:
		bodies: List[Body] = []
		for i in range(body_count):
			kb = body_frame.bodies[i]
			if not kb.is_tracked:
				bodies.append(Body(tracking_id=int(getattr(kb, "tracking_id", 0) or 0), is_tracked=False))
				continue
			joints: Dict[str, Joint] = {}
			for idx, name in enumerate(JOINT_NAMES):
				kj = kb.joints[idx]
				joints[name] = Joint(
					name=name,
					x=float(kj.Position.x),
					y=float(kj.Position.y),
					z=float(kj.Position.z),
					state=_TRACKING_STATES.get(int(kj.TrackingState), TrackingState.NOT_TRACKED),
				)
			bodies.append(Body(tracking_id=int(kb.tracking_id), is_tracked=True, joints=joints))
		return SkeletonFrame(t_host=time.time(), bodies=bodies)
