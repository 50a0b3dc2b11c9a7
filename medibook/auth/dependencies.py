import hmac

from fastapi import Header, HTTPException, Query

from medibook.core import config


def require_api_key(
    x_api_key: str | None = Header(default=None),
    api_key: str | None = Query(default=None),
) -> None:
    if not config.API_KEY:
        return

    key = x_api_key or api_key
    if not key or not hmac.compare_digest(key, config.API_KEY):
        raise HTTPException(status_code=401, detail="Unauthorized")
