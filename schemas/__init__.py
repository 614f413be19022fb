"""Pydantic request/response models for API validation and docs."""
from schemas.requests import (
	NotifyPayload,
	PatientCreatePayload,
)
from schemas.responses import (
	HeightStatusResponse,
	PatientCreateResponse,
	StatusResponse,
)

__all__ = [
	"HeightStatusResponse",
	"NotifyPayload",
	"PatientCreatePayload",
	"PatientCreateResponse",
	"StatusResponse",
]
