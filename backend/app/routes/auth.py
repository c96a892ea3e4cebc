from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from typing import Optional
from app.config import settings
from app.dependencies import get_current_session, get_session_token
from app.exceptions import CRMError
from app.services.auth_service import (
    AUTH_COOKIE_NAME,
    has_any_accounts,
    login_account,
    logout_session_by_token,
    register_account,
    session_max_age_seconds,
)

router = APIRouter()


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def set_auth_cookie(response: Response, token: str):
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        max_age=session_max_age_seconds(),
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_auth_cookie(response: Response):
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


@router.get("/bootstrap")
def bootstrap():
    """Tell the dashboard whether to show sign-up or login"""
    return {"hasAccounts": has_any_accounts()}


@router.get("/me")
def me(session: dict = Depends(get_current_session)):
    return session["user"]


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, response: Response):
    """Sign up - creates the account, its workspace and a session"""
    try:
        result = register_account(data.name, data.email, data.password)
    except CRMError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    set_auth_cookie(response, result["token"])
    return result["user"]


@router.post("/login")
def login(data: LoginRequest, response: Response):
    try:
        result = login_account(data.email, data.password)
    except CRMError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    set_auth_cookie(response, result["token"])
    return result["user"]


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(response: Response, session_token: str = Depends(get_session_token)):
    logout_session_by_token(session_token)
    clear_auth_cookie(response)
    return None
