from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class TrackingState(str, Enum):
	NOT_TRACKED = "not_tracked"
	INFERRED = "inferred"
	TRACKED = "tracked"


# Kinect v2 JointType order (index == JointType value).
JOINT_NAMES = [
	"SpineBase",
	"SpineMid",
	"Neck",
	"Head",
	"ShoulderLeft",
	"ElbowLeft",
	"WristLeft",
	"HandLeft",
	"ShoulderRight",
	"ElbowRight",
	"WristRight",
	"HandRight",
	"HipLeft",
	"KneeLeft",
	"AnkleLeft",
	"FootLeft",
	"HipRight",
	"KneeRight",
	"AnkleRight",
	"FootRight",
	"SpineShoulder",
	"HandTipLeft",
	"ThumbLeft",
	"HandTipRight",
	"ThumbRight",
]


@dataclass(frozen=True)
class Joint:
	"""
	A single skeletal landmark in camera space (meters, Y up).
	"""

	name: str
	x: float
	y: float
	z: float
	state: TrackingState = TrackingState.TRACKED

	@property
	def is_tracked(self) -> bool:
		return self.state is not TrackingState.NOT_TRACKED

	def distance_to(self, other: "Joint") -> float:
		return math.sqrt((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2)

	def to_dict(self) -> Dict[str, object]:
		return {"x": float(self.x), "y": float(self.y), "z": float(self.z), "confidence": self.state.value}


@dataclass(frozen=True)
class Body:
	tracking_id: int
	is_tracked: bool
	joints: Dict[str, Joint] = field(default_factory=dict)

	def get(self, name: str) -> Optional[Joint]:
		if not self.joints:
			return None
		return self.joints.get(name)


@dataclass(frozen=True)
class SkeletonFrame:
	"""
	One body-frame delivery from the sensor. Lives only for the duration of the handler.
	"""

	t_host: float
	bodies: List[Body] = field(default_factory=list)

	def first_tracked(self) -> Optional[Body]:
		for b in self.bodies:
			if b.is_tracked:
				return b
		return None
