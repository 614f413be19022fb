"""
FastAPI dependencies. Routes take `state: AppState = Depends(get_state)` to reach the
tracking session, persistence gateway, notifier and sensor bridge built in the lifespan.
"""
from fastapi import HTTPException, Request

from app_state import AppState


def get_state(request: Request) -> AppState:
	"""Return the AppState attached to the app; 503 until the lifespan has populated it."""
	state = getattr(request.app.state, "state", None)
	if state is None:
		raise HTTPException(status_code=503, detail="Server not ready")
	return state
