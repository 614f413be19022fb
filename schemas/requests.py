"""Pydantic request body models."""
from typing import Any, Optional

from pydantic import BaseModel, Field


class PatientCreatePayload(BaseModel):
	"""Request body for POST /api/patients. Registers a patient; the name must be unique (case-insensitive)."""

	name: str = Field(..., min_length=1, description="Full name; first two letters go into the patient id")
	age: int = Field(..., ge=0, le=150, description="Age in years")
	gender: str = Field(..., min_length=1, description="Gender; its initial starts the patient id")
	height: Optional[float] = Field(None, gt=0, description="Height in meters, usually from the Kinect capture")


class NotifyPayload(BaseModel):
	"""Request body for POST /notify. Relayed verbatim to websocket subscribers."""

	type: str = Field(..., min_length=1, description="Event type, e.g. 'height' or 'skeletal'")
	data: Any = Field(None, description="Event payload")
