"""Persistence for refresh-token rows."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tradejournal.models import RefreshToken


class TokenStore(Protocol):
    async def find_by_hash(self, token_hash: str) -> RefreshToken | None: ...

    async def insert(self, token: RefreshToken) -> RefreshToken: ...

    async def revoke_if_active(
        self, token_id: uuid.UUID, now: datetime, ip: str | None = None
    ) -> bool: ...

    async def find_active_by_family(
        self, token_family: uuid.UUID, now: datetime
    ) -> list[RefreshToken]: ...

    async def revoke_family(
        self,
        token_family: uuid.UUID,
        user_id: uuid.UUID,
        now: datetime,
        ip: str | None = None,
    ) -> int: ...

    async def revoke_all_for_user(
        self, user_id: uuid.UUID, now: datetime, ip: str | None = None
    ) -> int: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SqlTokenStore:
    """TokenStore backed by an SQLAlchemy async session.

    Writes are flushed, not committed; the caller decides when a unit of
    work ends via ``commit``/``rollback``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        return await self.db.scalar(
            select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        )

    async def insert(self, token: RefreshToken) -> RefreshToken:
        self.db.add(token)
        await self.db.flush()
        return token

    async def revoke_if_active(
        self, token_id: uuid.UUID, now: datetime, ip: str | None = None
    ) -> bool:
        # Single conditional UPDATE: of two concurrent callers only one
        # sees rowcount == 1.
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by_ip=ip)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    async def find_active_by_family(
        self, token_family: uuid.UUID, now: datetime
    ) -> list[RefreshToken]:
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.token_family == token_family,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at)
        )
        return list((await self.db.scalars(stmt)).all())

    async def revoke_family(
        self,
        token_family: uuid.UUID,
        user_id: uuid.UUID,
        now: datetime,
        ip: str | None = None,
    ) -> int:
        result = await self.db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token_family == token_family,
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=now, revoked_by_ip=ip)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    async def revoke_all_for_user(
        self, user_id: uuid.UUID, now: datetime, ip: str | None = None
    ) -> int:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by_ip=ip)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
