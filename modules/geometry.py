from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from modules.config import HeightConfig
from modules.sensor.types import Body, Joint


class InvalidMeasurementError(ValueError):
	"""Height could not be derived from the skeleton, or fell outside the plausible range."""


@dataclass(frozen=True)
class HeightCalibration:
	method: str = "head_foot_span"
	scale: float = 1.15
	min_m: float = 1.0
	max_m: float = 2.5

	@classmethod
	def from_config(cls, cfg: HeightConfig) -> "HeightCalibration":
		return cls(method=cfg.method, scale=float(cfg.calibration), min_m=float(cfg.min_m), max_m=float(cfg.max_m))


_TORSO_CHAIN = ("SpineBase", "SpineMid", "Neck", "Head")
_LEFT_LEG_CHAIN = ("HipLeft", "KneeLeft", "AnkleLeft", "FootLeft")
_RIGHT_LEG_CHAIN = ("HipRight", "KneeRight", "AnkleRight", "FootRight")


def _require(body: Body, name: str) -> Joint:
	j = body.get(name)
	if j is None:
		raise InvalidMeasurementError(f"joint {name} missing from skeleton")
	if not j.is_tracked:
		raise InvalidMeasurementError(f"joint {name} is not tracked")
	return j


def _chain_length(body: Body, chain: Sequence[str]) -> float:
	joints = [_require(body, n) for n in chain]
	return sum(a.distance_to(b) for a, b in zip(joints, joints[1:]))


def head_foot_span(body: Body) -> float:
	"""
	Vertical distance from the head joint down to the higher of the two feet.
	"""
	head = _require(body, "Head")
	left = _require(body, "FootLeft")
	right = _require(body, "FootRight")
	return float(head.y - max(left.y, right.y))


def segment_sum(body: Body) -> float:
	"""
	Earlier estimate: spine-to-head chain plus the mean of both leg chains.
	Less sensitive to floor tilt, more sensitive to bent knees.
	"""
	torso = _chain_length(body, _TORSO_CHAIN)
	legs = (_chain_length(body, _LEFT_LEG_CHAIN) + _chain_length(body, _RIGHT_LEG_CHAIN)) / 2.0
	return float(torso + legs)


def calculate_height(body: Body, calibration: Optional[HeightCalibration] = None) -> float:
	"""
	Estimate standing height in meters, rounded to centimeters.

	Raises InvalidMeasurementError for untracked joints and for results outside
	[calibration.min_m, calibration.max_m]; nothing outside that range is ever stored.
	"""
	cal = calibration or HeightCalibration()
	if cal.method == "segment_sum":
		raw = segment_sum(body)
	else:
		raw = head_foot_span(body)
	value = raw * float(cal.scale)
	if not math.isfinite(value):
		raise InvalidMeasurementError(f"non-finite height {value!r}")
	value = round(value, 2)
	if value < cal.min_m or value > cal.max_m:
		raise InvalidMeasurementError(f"height {value:.2f} m outside [{cal.min_m:.2f}, {cal.max_m:.2f}]")
	return value
