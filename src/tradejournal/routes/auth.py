import uuid

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, EmailStr

from tradejournal.auth import get_current_user_id
from tradejournal.database import async_session
from tradejournal.services.auth_service import AuthService
from tradejournal.services.token_manager import IssuedTokens, LogoutResult

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: EmailStr
    username: str
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str
    all_sessions: bool = False


class EmailRequest(BaseModel):
    email: EmailStr


class ConfirmEmailRequest(BaseModel):
    email: EmailStr
    token: str


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    token: str
    new_password: str


class TokenResponse(BaseModel):
    access_token: str
    expires_in_seconds: int
    refresh_token: str

    @classmethod
    def from_issued(cls, issued: IssuedTokens) -> "TokenResponse":
        return cls(
            access_token=issued.access_token,
            expires_in_seconds=issued.expires_in_seconds,
            refresh_token=issued.refresh_token,
        )


class MessageResponse(BaseModel):
    message: str


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("/register", response_model=MessageResponse)
async def register(body: RegisterRequest):
    async with async_session() as db:
        svc = AuthService(db)
        return await svc.register(body.email, body.username, body.password)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request):
    async with async_session() as db:
        svc = AuthService(db)
        issued = await svc.login(
            body.email, body.password, remember_me=body.remember_me, ip=_client_ip(request)
        )
        return TokenResponse.from_issued(issued)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, request: Request):
    async with async_session() as db:
        svc = AuthService(db)
        issued = await svc.refresh(body.refresh_token, ip=_client_ip(request))
        return TokenResponse.from_issued(issued)


@router.post("/logout", responses={204: {"description": "Unknown refresh token"}})
async def logout(
    body: LogoutRequest,
    request: Request,
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    async with async_session() as db:
        svc = AuthService(db)
        result = await svc.logout(
            body.refresh_token,
            user_id,
            all_sessions=body.all_sessions,
            ip=_client_ip(request),
        )
    if result is LogoutResult.not_found:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return {"message": "Logged out successfully."}


@router.post("/confirm-email", response_model=TokenResponse)
async def confirm_email(body: ConfirmEmailRequest, request: Request):
    async with async_session() as db:
        svc = AuthService(db)
        issued = await svc.confirm_email(body.email, body.token, ip=_client_ip(request))
        return TokenResponse.from_issued(issued)


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(body: EmailRequest):
    async with async_session() as db:
        svc = AuthService(db)
        return await svc.resend_verification(body.email)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(body: EmailRequest):
    async with async_session() as db:
        svc = AuthService(db)
        return await svc.forgot_password(body.email)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(body: ResetPasswordRequest):
    async with async_session() as db:
        svc = AuthService(db)
        return await svc.reset_password(body.email, body.token, body.new_password)
