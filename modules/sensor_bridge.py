from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from modules.frame_handler import FrameEventHandler
from modules.recovery import RecoveryController, RecoveryStatus
from modules.sensor.base import SensorDevice
from modules.sensor.types import SkeletonFrame

logger = logging.getLogger(__name__)


class SensorBridge:
	"""
	Owns the sensor handle and moves frames from the driver thread onto the event loop.

	- Driver callbacks only schedule work (call_soon_threadsafe); they never block.
	- Frames go through a bounded queue; when the consumer falls behind, new frames are
	  dropped and counted rather than queued without limit.
	- Device errors are handed to the RecoveryController, which reopens the device.
	"""

	def __init__(
		self,
		device_factory: Callable[[], SensorDevice],
		handler: FrameEventHandler,
		queue_size: int = 8,
		max_retries: int = 3,
		base_delay_s: float = 1.0,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		on_recovery_status: Optional[Callable[[RecoveryStatus, Dict[str, Any]], Awaitable[None]]] = None,
	) -> None:
		self._factory = device_factory
		self.handler = handler
		self._queue_size = int(queue_size) if int(queue_size) > 0 else 8
		self.device: Optional[SensorDevice] = None
		self.recovery = RecoveryController(
			close_device=self.close_device,
			reacquire=self.reacquire,
			max_retries=max_retries,
			base_delay_s=base_delay_s,
			sleep=sleep,
			on_status=on_recovery_status,
		)
		self._loop: Optional[asyncio.AbstractEventLoop] = None
		self._queue: Optional[asyncio.Queue] = None
		self._consumer: Optional[asyncio.Task] = None
		self.stats: Dict[str, Any] = {
			"frames_in": 0,
			"frames_dropped": 0,
			"handler_errors": 0,
			"device_errors": 0,
			"last_device_error": None,
		}

	async def start(self) -> bool:
		self._loop = asyncio.get_running_loop()
		self._queue = asyncio.Queue(maxsize=self._queue_size)
		self._consumer = asyncio.create_task(self._consume(), name="frame-consumer")
		return await self.ensure_stream()

	async def stop(self) -> None:
		await self.recovery.stop()
		if self._consumer is not None:
			self._consumer.cancel()
			try:
				await self._consumer
			except asyncio.CancelledError:
				pass
			self._consumer = None
		await self.close_device()

	async def ensure_stream(self) -> bool:
		"""Make sure frames are flowing; on failure hand the device to recovery."""
		if self.recovery.running:
			return False
		if self.device is not None and self.device.is_subscribed():
			return True
		try:
			await self._open_and_subscribe(self.device or self._factory())
		except Exception as e:
			self._note_device_error(e)
			logger.warning("[Sensor] frame stream unavailable: %r", e)
			self.recovery.trigger(f"stream acquisition failed: {e}")
			return False
		if self.recovery.status is RecoveryStatus.FAILED:
			# Reconnected by hand after recovery gave up.
			self.recovery.reset()
		return True

	async def close_device(self) -> None:
		dev = self.device
		self.device = None
		if dev is None:
			return
		loop = asyncio.get_running_loop()
		try:
			await loop.run_in_executor(None, dev.close)
		except Exception as e:
			logger.warning("[Sensor] close failed: %r", e)

	async def reacquire(self) -> None:
		"""Acquire the default device again, open it and re-subscribe. Raises on failure."""
		await self._open_and_subscribe(self._factory())

	async def manual_reconnect(self) -> bool:
		"""Operator-initiated reconnect; allowed after recovery gave up."""
		if self.recovery.running:
			return False
		self.recovery.reset()
		return self.recovery.trigger("manual reconnect")

	async def _open_and_subscribe(self, dev: SensorDevice) -> None:
		loop = asyncio.get_running_loop()
		self.device = dev
		try:
			if not dev.is_open():
				await loop.run_in_executor(None, dev.open)
			dev.subscribe(self._on_frame, self._on_error)
		except Exception:
			self.device = None
			try:
				await loop.run_in_executor(None, dev.close)
			except Exception:
				pass
			raise
		logger.info("[Sensor] %s streaming body frames", dev.name())

	# --- driver-thread callbacks ------------------------------------------------------

	def _on_frame(self, frame: SkeletonFrame) -> None:
		loop = self._loop
		if loop is None or loop.is_closed():
			return
		try:
			loop.call_soon_threadsafe(self._enqueue, frame)
		except RuntimeError:
			# Loop shutting down.
			pass

	def _on_error(self, err: BaseException) -> None:
		loop = self._loop
		if loop is None or loop.is_closed():
			return
		try:
			loop.call_soon_threadsafe(self._device_lost, err)
		except RuntimeError:
			pass

	# --- loop side ----------------------------------------------------------------------

	def _enqueue(self, frame: SkeletonFrame) -> None:
		if self._queue is None:
			return
		try:
			self._queue.put_nowait(frame)
			self.stats["frames_in"] = int(self.stats["frames_in"]) + 1
		except asyncio.QueueFull:
			self.stats["frames_dropped"] = int(self.stats["frames_dropped"]) + 1

	def _device_lost(self, err: BaseException) -> None:
		self._note_device_error(err)
		logger.warning("[Sensor] device lost: %r", err)
		self.recovery.trigger(str(err) or repr(err))

	def _note_device_error(self, err: BaseException) -> None:
		self.stats["device_errors"] = int(self.stats["device_errors"]) + 1
		self.stats["last_device_error"] = repr(err)

	async def _consume(self) -> None:
		assert self._queue is not None
		while True:
			frame = await self._queue.get()
			try:
				await self.handler.handle_frame(frame)
			except Exception as e:
				self.stats["handler_errors"] = int(self.stats["handler_errors"]) + 1
				logger.exception("[Frame] handler failed: %r", e)

	def get_status(self) -> Dict[str, Any]:
		dev = self.device
		return {
			"device": dev.get_status() if dev is not None else None,
			"subscribed": bool(dev is not None and dev.is_subscribed()),
			"queue_size": self._queue.qsize() if self._queue is not None else 0,
			"recovery": self.recovery.get_status(),
			**self.stats,
		}
