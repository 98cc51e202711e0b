"""API key authentication and request actor resolution."""

from fastapi import Header, HTTPException, Request

from rentalcore.audit.events import AuditActor, RequestContext


async def require_api_key(
    x_rentalcore_api_key: str = Header(..., alias="X-RentalCore-Api-Key"),
) -> str:
    """FastAPI dependency that validates admin API key from header."""
    from rentalcore.common.config import get_settings

    settings = get_settings()
    if x_rentalcore_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_rentalcore_api_key


def actor_from_request(request: Request) -> AuditActor:
    """Read the acting user from headers set by the auth layer upstream."""
    raw_id = request.headers.get("X-User-ID", "")
    try:
        user_id = int(raw_id)
    except ValueError:
        user_id = 0
    return AuditActor(
        user_id=user_id,
        username=request.headers.get("X-Username", ""),
    )


def context_from_request(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("User-Agent", ""),
        session_id=request.headers.get("X-Session-ID", ""),
    )
