"""Refresh-token issuance, rotation, revocation and reuse detection.

Every login starts a new token family. Each successful refresh revokes the
presented token and issues its successor in the same family, so at most one
token per family is active. Presenting a token that was already rotated out
means a copy of it leaked: the whole family is revoked and the caller has to
authenticate again.

The manager keeps no state of its own; everything lives in the token store.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from tradejournal.auth import create_access_token, generate_refresh_secret, hash_token, utcnow
from tradejournal.config import Settings, settings as default_settings
from tradejournal.errors import Forbidden, InvalidOrExpiredToken, TokenReuseDetected
from tradejournal.models import RefreshToken, User
from tradejournal.services.token_store import TokenStore

logger = logging.getLogger(__name__)


class IdentityLookup(Protocol):
    async def get_by_id(self, user_id: uuid.UUID) -> User | None: ...

    async def role_names(self, user: User) -> list[str]: ...


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    expires_in_seconds: int
    token_family: uuid.UUID


class LogoutResult(str, enum.Enum):
    not_found = "not_found"
    already_revoked = "already_revoked"
    revoked = "revoked"


class RefreshTokenManager:
    def __init__(
        self,
        store: TokenStore,
        users: IdentityLookup,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.users = users
        self.config = config or default_settings
        self.clock = clock

    @property
    def access_lifetime(self) -> timedelta:
        return timedelta(minutes=self.config.access_token_expire_minutes)

    def refresh_lifetime(self, remember_me: bool) -> timedelta:
        if remember_me:
            return timedelta(days=self.config.remember_me_refresh_token_expire_days)
        return timedelta(days=self.config.refresh_token_expire_days)

    async def issue(
        self,
        user: User,
        roles: Iterable[str],
        remember_me: bool = False,
        ip: str | None = None,
    ) -> IssuedTokens:
        """Start a new token family for a freshly authenticated user."""
        issued = await self._mint(
            user, roles, token_family=uuid.uuid4(), lifetime=self.refresh_lifetime(remember_me), ip=ip
        )
        await self.store.commit()
        return issued

    async def refresh(self, presented: str, ip: str | None = None) -> IssuedTokens:
        now = self.clock()
        stored = await self.store.find_by_hash(hash_token(presented))
        if stored is None:
            raise InvalidOrExpiredToken()

        if stored.is_expired(now):
            raise InvalidOrExpiredToken(reason="expired")

        if stored.revoked_at is not None:
            await self._revoke_family(stored, now, ip)
            raise TokenReuseDetected()

        if not await self.store.revoke_if_active(stored.id, now, ip):
            # Another request rotated this token between our read and write.
            await self._revoke_family(stored, now, ip)
            raise TokenReuseDetected()

        user = await self.users.get_by_id(stored.user_id)
        if user is None:
            await self.store.rollback()
            raise InvalidOrExpiredToken()

        try:
            issued = await self._mint(
                user,
                await self.users.role_names(user),
                token_family=stored.token_family,
                lifetime=self._rotated_lifetime(stored),
                ip=ip,
            )
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info("Tokens refreshed for user %s", user.id)
        return issued

    async def logout(
        self, presented: str, caller_user_id: uuid.UUID, ip: str | None = None
    ) -> LogoutResult:
        stored = await self.store.find_by_hash(hash_token(presented))
        if stored is None:
            return LogoutResult.not_found

        if stored.user_id != caller_user_id:
            logger.warning(
                "User %s attempted to revoke a refresh token owned by %s",
                caller_user_id,
                stored.user_id,
            )
            raise Forbidden("Refresh token does not belong to the current user.")

        if stored.revoked_at is not None:
            return LogoutResult.already_revoked

        revoked = await self.store.revoke_if_active(stored.id, self.clock(), ip)
        await self.store.commit()
        return LogoutResult.revoked if revoked else LogoutResult.already_revoked

    async def revoke_all_for_user(self, user_id: uuid.UUID, ip: str | None = None) -> int:
        count = await self.store.revoke_all_for_user(user_id, self.clock(), ip)
        await self.store.commit()
        logger.info("Revoked %d refresh tokens for user %s", count, user_id)
        return count

    async def _revoke_family(self, stored: RefreshToken, now: datetime, ip: str | None) -> None:
        logger.warning(
            "Token reuse detected for user %s. Revoking token family %s.",
            stored.user_id,
            stored.token_family,
        )
        await self.store.revoke_family(stored.token_family, stored.user_id, now, ip)
        await self.store.commit()

    def _rotated_lifetime(self, stored: RefreshToken) -> timedelta:
        # A rotated token keeps the lifetime class of the login that started
        # its family.
        original = stored.expires_at - stored.created_at
        return self.refresh_lifetime(original > self.refresh_lifetime(False))

    async def _mint(
        self,
        user: User,
        roles: Iterable[str],
        token_family: uuid.UUID,
        lifetime: timedelta,
        ip: str | None,
    ) -> IssuedTokens:
        now = self.clock()
        secret = generate_refresh_secret()
        row = RefreshToken(
            user_id=user.id,
            token_hash=hash_token(secret),
            token_family=token_family,
            created_at=now,
            expires_at=now + lifetime,
            created_by_ip=ip,
        )
        await self.store.insert(row)
        access_lifetime = self.access_lifetime
        return IssuedTokens(
            access_token=create_access_token(user, roles, access_lifetime),
            refresh_token=secret,
            expires_in_seconds=int(access_lifetime.total_seconds()),
            token_family=token_family,
        )
