from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from tradejournal.auth import (
    EMAIL_CONFIRMATION_PURPOSE,
    PASSWORD_RESET_PURPOSE,
    create_email_confirmation_token,
    create_password_reset_token,
    hash_password,
    utcnow,
    verify_action_token,
    verify_password,
)
from tradejournal.errors import (
    AccountLocked,
    EmailUnconfirmed,
    InvalidCredentials,
    InvalidOrExpiredToken,
    ValidationError,
)
from tradejournal.services.email_sender import EmailSender
from tradejournal.services.token_manager import IssuedTokens, LogoutResult, RefreshTokenManager
from tradejournal.services.token_store import SqlTokenStore
from tradejournal.services.user_store import UserStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 10
USERNAME_LENGTH = (3, 50)

REGISTERED_MESSAGE = "Registration successful. Please check your email to verify your account."
VERIFICATION_SENT_MESSAGE = "If an account exists with this email, a verification email has been sent."
RESET_SENT_MESSAGE = "If an account exists with this email, a password reset link has been sent."
RESET_DONE_MESSAGE = "Password has been reset successfully. Please log in with your new password."
CONFIRM_FAILED_MESSAGE = "Email confirmation failed. The link may be invalid or expired."


def password_problems(password: str) -> list[str]:
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not any(c.isdigit() for c in password):
        problems.append("Password must contain a digit.")
    if not any(c.islower() for c in password):
        problems.append("Password must contain a lowercase letter.")
    if not any(c.isupper() for c in password):
        problems.append("Password must contain an uppercase letter.")
    if all(c.isalnum() for c in password):
        problems.append("Password must contain a non-alphanumeric character.")
    return problems


class AuthService:
    def __init__(self, db: AsyncSession, email_sender: EmailSender | None = None):
        self.db = db
        self.users = UserStore(db)
        self.tokens = RefreshTokenManager(SqlTokenStore(db), self.users)
        self.email_sender = email_sender or EmailSender()

    async def register(self, email: str, username: str, password: str) -> dict:
        errors = password_problems(password)
        low, high = USERNAME_LENGTH
        if not low <= len(username.strip()) <= high:
            errors.append(f"Username must be between {low} and {high} characters.")
        if await self.users.get_by_email(email):
            errors.append("Email is already registered.")
        if await self.users.get_by_username(username):
            errors.append("Username is already taken.")
        if errors:
            raise ValidationError("Registration failed.", details={"errors": errors})

        user = await self.users.create(email, username, hash_password(password))
        await self.users.add_role(user, self.users.config.default_role)
        await self.db.commit()

        await self.email_sender.send_email_confirmation(user, create_email_confirmation_token(user))
        logger.info("User %s registered. Confirmation email sent.", user.email)
        return {"message": REGISTERED_MESSAGE}

    async def login(
        self, email: str, password: str, remember_me: bool = False, ip: str | None = None
    ) -> IssuedTokens:
        user = await self.users.get_by_email(email)
        if user is None:
            logger.warning("Login failed: user not found (%s)", email)
            raise InvalidCredentials()

        if not user.email_confirmed:
            logger.warning("Login failed: email not confirmed (%s)", user.email)
            raise EmailUnconfirmed()

        now = utcnow()
        if self.users.is_locked_out(user, now):
            logger.warning("Login failed: account locked (%s)", user.email)
            raise AccountLocked()

        if not verify_password(password, user.password_hash):
            locked = await self.users.register_failed_login(user, now)
            await self.db.commit()
            if locked:
                logger.warning("Account locked after repeated failures (%s)", user.email)
                raise AccountLocked()
            logger.warning("Login failed: invalid password (%s)", user.email)
            raise InvalidCredentials()

        await self.users.register_successful_login(user, now)
        issued = await self.tokens.issue(
            user, await self.users.role_names(user), remember_me=remember_me, ip=ip
        )
        logger.info("User authenticated: %s", user.email)
        return issued

    async def refresh(self, refresh_token: str, ip: str | None = None) -> IssuedTokens:
        return await self.tokens.refresh(refresh_token, ip=ip)

    async def logout(
        self,
        refresh_token: str,
        user_id: uuid.UUID,
        all_sessions: bool = False,
        ip: str | None = None,
    ) -> LogoutResult:
        result = await self.tokens.logout(refresh_token, user_id, ip=ip)
        if all_sessions:
            await self.tokens.revoke_all_for_user(user_id, ip=ip)
        logger.info("User %s logged out (%s, all_sessions=%s)", user_id, result.value, all_sessions)
        return result

    async def confirm_email(self, email: str, token: str, ip: str | None = None) -> IssuedTokens:
        user = await self.users.get_by_email(email)
        if user is None:
            raise ValidationError("Invalid confirmation request.")

        if user.email_confirmed:
            raise ValidationError(CONFIRM_FAILED_MESSAGE)
        try:
            verify_action_token(token, EMAIL_CONFIRMATION_PURPOSE, user)
        except InvalidOrExpiredToken:
            raise ValidationError(CONFIRM_FAILED_MESSAGE)

        user.email_confirmed = True
        logger.info("Email confirmed for user %s", user.email)
        return await self.tokens.issue(user, await self.users.role_names(user), ip=ip)

    async def resend_verification(self, email: str) -> dict:
        user = await self.users.get_by_email(email)
        if user is not None and not user.email_confirmed:
            await self.email_sender.send_email_confirmation(
                user, create_email_confirmation_token(user)
            )
            logger.info("Verification email resent to %s", user.email)
        return {"message": VERIFICATION_SENT_MESSAGE}

    async def forgot_password(self, email: str) -> dict:
        user = await self.users.get_by_email(email)
        if user is not None and user.email_confirmed:
            await self.email_sender.send_password_reset(user, create_password_reset_token(user))
            logger.info("Password reset requested for user %s", user.email)
        return {"message": RESET_SENT_MESSAGE}

    async def reset_password(self, email: str, token: str, new_password: str) -> dict:
        user = await self.users.get_by_email(email)
        if user is None:
            raise ValidationError("Password reset failed.")

        try:
            verify_action_token(token, PASSWORD_RESET_PURPOSE, user)
        except InvalidOrExpiredToken:
            raise ValidationError("Password reset failed. The link may be invalid or expired.")

        errors = password_problems(new_password)
        if errors:
            raise ValidationError("Password reset failed.", details={"errors": errors})

        user.password_hash = hash_password(new_password)
        user.failed_login_count = 0
        user.lockout_end = None
        await self.tokens.revoke_all_for_user(user.id)
        logger.info("Password reset for user %s. All sessions revoked.", user.email)
        return {"message": RESET_DONE_MESSAGE}
