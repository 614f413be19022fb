"""
Tracking session state machine.

One `asyncio.Lock` guards the mode, the active patient and the capture ticker handle. Only
the transition methods below mutate them; the frame handler reads through `snapshot()`
and the claim methods, which take the same lock.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Mode(str, Enum):
	IDLE = "Idle"
	MEASURING_HEIGHT = "MeasuringHeight"
	TRACKING_SKELETAL = "TrackingSkeletal"


@dataclass(frozen=True)
class SessionSnapshot:
	mode: Mode
	patient_id: str
	capture_interval_ms: int
	capture_due: bool
	last_height: Optional[float]
	last_height_t: Optional[float]
	ticks: int


@dataclass(frozen=True)
class HeightClaim:
	patient_id: str
	activation: int


class CaptureTicker:
	"""
	Cancellable periodic task. `on_tick` runs on the loop, at most once per interval.
	stop() cancels and awaits the task, so no tick fires after it returns.
	"""

	def __init__(self, interval_s: float, on_tick: Callable[[], None]) -> None:
		self.interval_s = float(interval_s)
		self._on_tick = on_tick
		self._task: Optional[asyncio.Task] = None

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running:
			return
		self._task = asyncio.create_task(self._run(), name="capture-ticker")

	async def stop(self) -> None:
		task = self._task
		self._task = None
		if task is None:
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass

	async def _run(self) -> None:
		while True:
			await asyncio.sleep(self.interval_s)
			try:
				self._on_tick()
			except Exception as e:
				logger.warning("[Session] capture tick callback failed: %r", e)


class TrackingSession:
	def __init__(
		self,
		patient_id: str,
		capture_interval_ms: int = 500,
		ensure_stream: Optional[Callable[[], Awaitable[bool]]] = None,
	) -> None:
		self._lock = asyncio.Lock()
		self._mode = Mode.IDLE
		self._patient_id = str(patient_id)
		self._capture_interval_ms = int(capture_interval_ms) if int(capture_interval_ms) > 0 else 500
		self._ensure_stream = ensure_stream
		self._ticker: Optional[CaptureTicker] = None
		self._capture_due = False
		self._height_claimed = False
		# Bumped by every transition; stale height claims compare against it.
		self._activation = 0
		self._last_height: Optional[float] = None
		self._last_height_t: Optional[float] = None
		self._ticks = 0

	@property
	def mode(self) -> Mode:
		return self._mode

	@property
	def patient_id(self) -> str:
		return self._patient_id

	@property
	def capture_interval_ms(self) -> int:
		return self._capture_interval_ms

	@property
	def ticks(self) -> int:
		return self._ticks

	@property
	def last_height(self) -> Optional[float]:
		return self._last_height

	def set_stream_provider(self, ensure_stream: Optional[Callable[[], Awaitable[bool]]]) -> None:
		self._ensure_stream = ensure_stream

	async def snapshot(self) -> SessionSnapshot:
		async with self._lock:
			return self._snapshot_locked()

	def _snapshot_locked(self) -> SessionSnapshot:
		return SessionSnapshot(
			mode=self._mode,
			patient_id=self._patient_id,
			capture_interval_ms=self._capture_interval_ms,
			capture_due=self._capture_due,
			last_height=self._last_height,
			last_height_t=self._last_height_t,
			ticks=self._ticks,
		)

	# --- transitions -----------------------------------------------------------------

	async def select_patient(self, patient_id: str) -> None:
		pid = (patient_id or "").strip()
		if not pid:
			raise ValueError("patient id is required")
		async with self._lock:
			self._set_patient_locked(pid)

	async def start_height_measurement(self, patient_id: Optional[str] = None) -> bool:
		async with self._lock:
			if patient_id and patient_id.strip():
				self._set_patient_locked(patient_id.strip())
			if self._mode is Mode.MEASURING_HEIGHT:
				logger.info("[Session] height capturing is already running")
				return False
			if self._mode is Mode.TRACKING_SKELETAL:
				await self._stop_skeletal_locked()
			self._height_claimed = False
			self._mode = Mode.MEASURING_HEIGHT
			self._activation += 1
			logger.info("[Session] height measurement started for %s", self._patient_id)
			await self._acquire_stream_locked()
			return True

	async def start_skeletal_tracking(self, patient_id: Optional[str] = None) -> bool:
		async with self._lock:
			if patient_id and patient_id.strip():
				self._set_patient_locked(patient_id.strip())
			if self._mode is Mode.TRACKING_SKELETAL:
				logger.info("[Session] skeletal tracking is already running")
				return False
			self._mode = Mode.TRACKING_SKELETAL
			self._height_claimed = False
			self._activation += 1
			await self._acquire_stream_locked()
			self._capture_due = False
			self._ticker = CaptureTicker(self._capture_interval_ms / 1000.0, self._on_tick)
			self._ticker.start()
			logger.info(
				"[Session] skeletal tracking started for %s every %d ms", self._patient_id, self._capture_interval_ms
			)
			return True

	async def stop_skeletal_tracking(self) -> bool:
		async with self._lock:
			return await self._stop_skeletal_locked()

	async def stop_all(self) -> None:
		async with self._lock:
			if self._mode is Mode.MEASURING_HEIGHT:
				self._mode = Mode.IDLE
				self._activation += 1
			self._height_claimed = False
			await self._stop_skeletal_locked()
			logger.info("[Session] stopped all tracking")

	def _set_patient_locked(self, pid: str) -> None:
		if pid == self._patient_id:
			return
		logger.info("[Session] active patient %s -> %s", self._patient_id, pid)
		self._patient_id = pid
		# The last height belongs to the previous patient.
		self._last_height = None
		self._last_height_t = None

	async def _stop_skeletal_locked(self) -> bool:
		if self._mode is not Mode.TRACKING_SKELETAL:
			return False
		ticker = self._ticker
		self._ticker = None
		if ticker is not None:
			await ticker.stop()
		self._capture_due = False
		self._mode = Mode.IDLE
		self._activation += 1
		logger.info("[Session] skeletal tracking stopped")
		return True

	async def _acquire_stream_locked(self) -> None:
		if self._ensure_stream is None:
			return
		try:
			ok = await self._ensure_stream()
		except Exception as e:
			logger.warning("[Session] frame stream acquisition raised: %r", e)
			return
		if not ok:
			logger.warning("[Session] frame stream unavailable; %s will resume once the sensor recovers", self._mode.value)

	def _on_tick(self) -> None:
		# Runs on the loop between awaits; the lock holder never observes a half-set flag.
		self._ticks += 1
		self._capture_due = True

	# --- frame-handler claims ---------------------------------------------------------

	async def claim_height_measurement(self) -> Optional[HeightClaim]:
		"""Claim the single measurement of the current activation. None if already claimed."""
		async with self._lock:
			if self._mode is not Mode.MEASURING_HEIGHT or self._height_claimed:
				return None
			self._height_claimed = True
			return HeightClaim(patient_id=self._patient_id, activation=self._activation)

	async def finish_height_measurement(self, claim: HeightClaim, value: Optional[float]) -> None:
		"""Record the outcome of a claim and revert to Idle, unless a newer transition happened."""
		async with self._lock:
			if value is not None and claim.patient_id == self._patient_id:
				self._last_height = float(value)
				self._last_height_t = time.time()
			if claim.activation != self._activation:
				return
			if self._mode is Mode.MEASURING_HEIGHT:
				self._mode = Mode.IDLE
				logger.info("[Session] height measurement finished; back to Idle")
			self._height_claimed = False

	async def claim_skeletal_capture(self) -> Optional[str]:
		"""Consume a pending capture tick. Returns the patient id, or None if nothing is due."""
		async with self._lock:
			if self._mode is not Mode.TRACKING_SKELETAL or not self._capture_due:
				return None
			self._capture_due = False
			return self._patient_id
