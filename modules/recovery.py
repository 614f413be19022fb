from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class RecoveryStatus(str, Enum):
	OK = "ok"
	RECOVERING = "recovering"
	FAILED = "failed"


class RecoveryController:
	"""
	Supervisor for sensor loss.

	On trigger(): up to `max_retries` attempts, each one closing the old handle, sleeping
	base_delay * 2**attempt (1 s, 2 s, 4 s by default) and then reacquiring the default
	device. After the last failed attempt the status stays FAILED and further triggers are
	ignored until reset() (the manual reconnect).
	"""

	def __init__(
		self,
		close_device: Callable[[], Awaitable[None]],
		reacquire: Callable[[], Awaitable[None]],
		max_retries: int = 3,
		base_delay_s: float = 1.0,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		on_status: Optional[Callable[[RecoveryStatus, Dict[str, Any]], Awaitable[None]]] = None,
	) -> None:
		self._close_device = close_device
		self._reacquire = reacquire
		self.max_retries = max(0, int(max_retries))
		self.base_delay_s = max(0.0, float(base_delay_s))
		self._sleep = sleep
		self._on_status = on_status
		self._task: Optional[asyncio.Task] = None
		self.status = RecoveryStatus.OK
		self.attempts = 0
		self.recoveries = 0
		self.last_reason: Optional[str] = None
		self.last_error: Optional[str] = None

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def backoff_delay(self, attempt: int) -> float:
		return self.base_delay_s * (2 ** int(attempt))

	def trigger(self, reason: str) -> bool:
		"""Start recovery in the background. Returns False if already recovering or given up."""
		if self.status is not RecoveryStatus.OK or self.running:
			logger.info("[Recovery] trigger ignored (%s): %s", self.status.value, reason)
			return False
		self._task = asyncio.create_task(self.run(reason), name="sensor-recovery")
		return True

	def reset(self) -> None:
		if self.running:
			return
		self.status = RecoveryStatus.OK
		self.attempts = 0
		self.last_error = None

	async def run(self, reason: str) -> bool:
		self.last_reason = reason
		self.attempts = 0
		await self._set_status(RecoveryStatus.RECOVERING)
		logger.warning("[Recovery] sensor unavailable (%s); up to %d reconnect attempts", reason, self.max_retries)
		for attempt in range(self.max_retries):
			self.attempts = attempt + 1
			try:
				await self._close_device()
			except Exception as e:
				logger.debug("[Recovery] close before retry failed: %r", e)
			delay = self.backoff_delay(attempt)
			await self._sleep(delay)
			try:
				await self._reacquire()
			except asyncio.CancelledError:
				raise
			except Exception as e:
				self.last_error = repr(e)
				logger.warning(
					"[Recovery] attempt %d/%d after %.1fs failed: %r", attempt + 1, self.max_retries, delay, e
				)
				continue
			self.recoveries += 1
			self.last_error = None
			logger.info("[Recovery] sensor reacquired on attempt %d", attempt + 1)
			await self._set_status(RecoveryStatus.OK)
			return True

		logger.error(
			"[Recovery] giving up after %d attempts; reconnect the sensor and call /reconnectSensor/", self.max_retries
		)
		await self._set_status(RecoveryStatus.FAILED)
		return False

	async def stop(self) -> None:
		task = self._task
		self._task = None
		if task is None or task.done():
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass

	async def _set_status(self, status: RecoveryStatus) -> None:
		self.status = status
		if self._on_status is None:
			return
		try:
			await self._on_status(status, self.get_status())
		except Exception as e:
			logger.warning("[Recovery] status listener failed: %r", e)

	def get_status(self) -> Dict[str, Any]:
		return {
			"status": self.status.value,
			"attempts": int(self.attempts),
			"max_retries": int(self.max_retries),
			"recoveries": int(self.recoveries),
			"last_reason": self.last_reason,
			"last_error": self.last_error,
		}
