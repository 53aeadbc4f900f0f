from fastapi import APIRouter, Request

from sessiongate import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    state = request.app.state
    return {
        "status": "ok",
        "role": state.settings.app_role,
        "version": __version__,
        "secretFingerprint": state.shared_secret.fingerprint(),
    }


__all__ = ["router"]
