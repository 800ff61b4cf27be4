from fastapi import Header, HTTPException, Request, status

from stockwatch.services.monitor import Monitor


async def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Identify the caller from the X-Owner-Id header."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Owner-Id header",
        )
    return x_owner_id.strip()


async def get_monitor(request: Request) -> Monitor:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor is not running",
        )
    return monitor
