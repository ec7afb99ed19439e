import hmac

from fastapi import Depends, HTTPException, Request, status

from app.core.config import Settings, get_settings


async def require_orchestrator_key(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.orchestrator_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="orchestrator API key is not configured",
        )
    api_key = request.headers.get(settings.api_key_header)
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"orchestrator auth requires {settings.api_key_header}",
        )
    if not hmac.compare_digest(api_key.encode("utf-8"), settings.orchestrator_api_key.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid orchestrator API key")
