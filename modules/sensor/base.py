from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

from modules.sensor.types import SkeletonFrame

FrameCallback = Callable[[SkeletonFrame], None]
ErrorCallback = Callable[[BaseException], None]


class DeviceUnavailableError(RuntimeError):
	"""Raised (or reported through the error callback) when the sensor cannot deliver frames."""


class SensorDevice(ABC):
	"""
	Driver adapter interface.

	Implementations deliver frames from their own thread: `on_frame` is called once per
	body frame, `on_error` at most once when the stream dies. Callbacks must stay cheap;
	the caller hands frames to the event loop.
	"""

	@abstractmethod
	def name(self) -> str: ...

	@abstractmethod
	def open(self) -> None:
		"""Acquire the default device. Raises DeviceUnavailableError."""
		...

	@abstractmethod
	def close(self) -> None: ...

	@abstractmethod
	def subscribe(self, on_frame: FrameCallback, on_error: ErrorCallback) -> None: ...

	@abstractmethod
	def unsubscribe(self) -> None: ...

	@abstractmethod
	def is_open(self) -> bool: ...

	@abstractmethod
	def is_subscribed(self) -> bool: ...

	@abstractmethod
	def get_status(self) -> Dict[str, Any]: ...
