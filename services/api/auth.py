"""API key check and caller identity."""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shared import settings
from shared.context import CallerContext

security = HTTPBearer(auto_error=False)


def verify_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """Verify API key from header."""
    if credentials is None or credentials.credentials != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_user_id: Optional[str] = Header(None)
) -> Optional[CallerContext]:
    """Caller identity, or None when the API key or user id is missing or wrong."""
    if credentials is None or credentials.credentials != settings.api_key:
        return None
    if not x_user_id or not x_user_id.strip():
        return None
    return CallerContext(user_id=x_user_id.strip())


def get_caller(caller: Optional[CallerContext] = Depends(get_optional_caller)) -> CallerContext:
    if caller is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return caller
