"""FastAPI routes for inspecting and cancelling intake sessions."""

from fastapi import APIRouter, HTTPException, Request

from controllers.session_controller import cancel_session, get_session

router = APIRouter(prefix="/sessions")


@router.get("/{user_id}")
async def get_session_route(request: Request, user_id: str):
	try:
		return await get_session(request, user_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/{user_id}")
async def cancel_session_route(request: Request, user_id: str):
	try:
		return await cancel_session(request, user_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
