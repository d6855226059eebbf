from fastapi import Request, HTTPException, status
from interview_coach.config import get_settings


async def verify_api_token(request: Request):
    """Bearer-token check; open when no API token is configured."""
    settings = get_settings()
    if not settings.api_token:
        return
    token = request.headers.get("Authorization")
    if not token or token != f"Bearer {settings.api_token}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing API token"
        )
