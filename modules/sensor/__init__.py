"""
Body-tracking sensor drivers.

`SensorDevice` is the driver contract; `get_sensor()` picks the configured driver the same
way the server picks a video backend, so the relay runs with or without a Kinect attached.
"""

from typing import Optional

from modules.config import AppConfig, get_config
from modules.sensor.base import DeviceUnavailableError, SensorDevice
from modules.sensor.types import Body, Joint, SkeletonFrame, TrackingState


def get_sensor(cfg: Optional[AppConfig] = None, *, backend_override: Optional[str] = None) -> SensorDevice:
	cfg = cfg or get_config()
	backend = (backend_override or cfg.sensor.backend or "kinect2").strip().lower()
	if backend in ("simulated", "sim"):
		from modules.sensor.simulated import SimulatedSensor

		return SimulatedSensor(subject_height_m=cfg.sensor.simulated_height_m, fps=cfg.sensor.simulated_fps)

	from modules.sensor.kinect_v2 import KinectV2Sensor

	return KinectV2Sensor(
		poll_interval_s=cfg.sensor.poll_interval_seconds,
		unavailable_grace_s=cfg.sensor.unavailable_grace_seconds,
		max_null_frames=cfg.sensor.max_null_frames,
	)


__all__ = [
	"Body",
	"DeviceUnavailableError",
	"Joint",
	"SensorDevice",
	"SkeletonFrame",
	"TrackingState",
	"get_sensor",
]
