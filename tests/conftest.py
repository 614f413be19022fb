import threading
from typing import Any, Dict, List, Optional

import pytest

from modules.notifier import Notifier
from modules.sensor.base import DeviceUnavailableError, SensorDevice
from modules.sensor.simulated import SimulatedSensor
from modules.sensor.types import JOINT_NAMES, Body, Joint, SkeletonFrame, TrackingState
from modules.store.base import StoreError
from modules.store.memory import MemoryStore


class FakeSensor(SensorDevice):
	"""Sensor driven by the test: frames and errors are pushed by hand."""

	def __init__(self, fail_open: bool = False) -> None:
		self.fail_open = fail_open
		self.opened = 0
		self.closed = 0
		self._open = False
		self._on_frame = None
		self._on_error = None

	def name(self) -> str:
		return "fake"

	def open(self) -> None:
		if self.fail_open:
			raise DeviceUnavailableError("no sensor attached")
		self.opened += 1
		self._open = True

	def close(self) -> None:
		self.closed += 1
		self._open = False
		self.unsubscribe()

	def subscribe(self, on_frame, on_error) -> None:
		if not self._open:
			raise DeviceUnavailableError("not open")
		self._on_frame = on_frame
		self._on_error = on_error

	def unsubscribe(self) -> None:
		self._on_frame = None
		self._on_error = None

	def is_open(self) -> bool:
		return self._open

	def is_subscribed(self) -> bool:
		return self._on_frame is not None

	def get_status(self) -> Dict[str, Any]:
		return {"backend": self.name(), "open": self._open}

	def emit(self, frame: SkeletonFrame) -> None:
		"""Deliver a frame from a separate thread, as a real driver does."""
		cb = self._on_frame
		t = threading.Thread(target=cb, args=(frame,))
		t.start()
		t.join()

	def fail(self, err: Optional[BaseException] = None) -> None:
		cb = self._on_error
		t = threading.Thread(target=cb, args=(err or DeviceUnavailableError("sensor unplugged"),))
		t.start()
		t.join()


class FlakyStore(MemoryStore):
	"""MemoryStore whose writes can be switched to fail."""

	def __init__(self) -> None:
		super().__init__()
		self.fail_puts = False
		self.fail_gets = False
		self.put_attempts = 0

	async def put(self, path: str, value: Any) -> None:
		self.put_attempts += 1
		if self.fail_puts:
			raise StoreError("HTTP 503 from store", retryable=True, status=503)
		await super().put(path, value)

	async def get(self, path: str) -> Any:
		if self.fail_gets:
			raise StoreError("connection refused", retryable=True)
		return await super().get(path)


class RecordingNotifier(Notifier):
	def __init__(self) -> None:
		super().__init__()
		self.events: List[Dict[str, Any]] = []

	def name(self) -> str:
		return "recording"

	async def _deliver(self, event: Dict[str, Any]) -> None:
		self.events.append(event)

	def of_type(self, event_type: str) -> List[Dict[str, Any]]:
		return [e for e in self.events if e["type"] == event_type]


def standing_body(head_y: float = 0.55, foot_left_y: float = -0.95, foot_right_y: float = -0.95, **states) -> Body:
	"""A tracked body with every joint present; Head and feet at the given heights."""
	joints = {}
	for name in JOINT_NAMES:
		y = {"Head": head_y, "FootLeft": foot_left_y, "FootRight": foot_right_y}.get(name, 0.0)
		joints[name] = Joint(name=name, x=0.0, y=y, z=2.5, state=states.get(name, TrackingState.TRACKED))
	return Body(tracking_id=1, is_tracked=True, joints=joints)


def frame_of(body: Optional[Body], t: float = 1000.0) -> SkeletonFrame:
	bodies = [Body(tracking_id=0, is_tracked=False)]
	if body is not None:
		bodies.append(body)
	return SkeletonFrame(t_host=t, bodies=bodies)


@pytest.fixture
def fake_sensor():
	return FakeSensor()


@pytest.fixture
def store():
	return FlakyStore()


@pytest.fixture
def notifier():
	return RecordingNotifier()


@pytest.fixture
def sim_frame():
	return SimulatedSensor(subject_height_m=1.72, seed=7).make_frame(t=0.0)
