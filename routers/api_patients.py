"""Patient API. Routes: /api/patients."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from app_state import AppState
from deps import get_state
from modules.persistence import DuplicatePatientError, PatientIdCollisionError
from modules.store import StoreError
from schemas.requests import PatientCreatePayload
from schemas.responses import PatientCreateResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["api_patients"])


@router.get("/api/patients")
async def list_patients_endpoint(state: AppState = Depends(get_state)):
	"""List all registered patients (without their skeletal data)."""
	try:
		patients = await state.gateway.list_patients()
	except StoreError as e:
		logger.error("[Patients] Error listing patients: %s", e)
		raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")
	return {"patients": patients}


@router.post("/api/patients", status_code=201, response_model=PatientCreateResponse)
async def create_patient_endpoint(payload: PatientCreatePayload, state: AppState = Depends(get_state)):
	"""Register a patient. 409 if the name (case-insensitive) or the generated id is taken."""
	try:
		patient_id, record = await state.gateway.create_patient(
			name=payload.name,
			age=payload.age,
			gender=payload.gender,
			height=payload.height,
		)
	except (DuplicatePatientError, PatientIdCollisionError) as e:
		raise HTTPException(status_code=409, detail=str(e))
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except StoreError as e:
		raise HTTPException(status_code=503, detail=f"Store unavailable: {e}")

	if state.cfg is not None and state.cfg.tracking.select_new_patient:
		await state.session.select_patient(patient_id)
	if state.notifier is not None:
		await state.notifier.publish("patient", {"patientId": patient_id, **record})
	return {"patientId": patient_id, "patient": record}
