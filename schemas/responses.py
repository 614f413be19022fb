"""Pydantic response models for API docs."""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class StatusResponse(BaseModel):
	"""Response from the tracking control endpoints."""

	status: str


class HeightStatusResponse(BaseModel):
	"""Response from /getHeight/."""

	status: str
	height: Optional[float] = None


class PatientCreateResponse(BaseModel):
	"""Response from POST /api/patients."""

	patientId: str
	patient: Dict[str, Any]
