from typing import Optional
from fastapi import Cookie, Depends, HTTPException, status
from app.services.auth_service import AUTH_COOKIE_NAME, get_session_user_by_token


def get_session_token(session_token: Optional[str] = Cookie(default=None, alias=AUTH_COOKIE_NAME)) -> str:
    return session_token or ""


def get_optional_session(session_token: str = Depends(get_session_token)) -> Optional[dict]:
    """{user, userId} for a valid session cookie, else None"""
    if not session_token:
        return None
    return get_session_user_by_token(session_token)


def get_current_session(session: Optional[dict] = Depends(get_optional_session)) -> dict:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required."
        )
    return session


def get_current_user_id(session: dict = Depends(get_current_session)) -> str:
    return session["userId"]
