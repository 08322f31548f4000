from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradejournal.config import Settings, settings as default_settings
from tradejournal.models import Role, User, user_roles


class UserStore:
    def __init__(self, db: AsyncSession, config: Settings | None = None):
        self.db = db
        self.config = config or default_settings

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        return await self.db.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    async def get_by_username(self, username: str) -> User | None:
        return await self.db.scalar(
            select(User).where(func.lower(User.username) == username.strip().lower())
        )

    async def create(self, email: str, username: str, password_hash: str) -> User:
        user = User(
            email=email.strip().lower(),
            username=username.strip(),
            password_hash=password_hash,
            email_confirmed=False,
            failed_login_count=0,
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def role_names(self, user: User) -> list[str]:
        stmt = (
            select(Role.name)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user.id)
            .order_by(Role.name)
        )
        return list((await self.db.scalars(stmt)).all())

    async def add_role(self, user: User, name: str) -> Role:
        role = await self.db.scalar(select(Role).where(Role.name == name))
        if role is None:
            role = Role(name=name)
            self.db.add(role)
        await self.db.refresh(user, attribute_names=["roles"])
        if role not in user.roles:
            user.roles.append(role)
        await self.db.flush()
        return role

    def is_locked_out(self, user: User, now: datetime) -> bool:
        return user.lockout_end is not None and user.lockout_end > now

    async def register_failed_login(self, user: User, now: datetime) -> bool:
        """Counts a failed password check; returns True when it locks the account."""
        user.failed_login_count = (user.failed_login_count or 0) + 1
        locked = user.failed_login_count >= self.config.lockout_max_failed_attempts
        if locked:
            user.lockout_end = now + timedelta(minutes=self.config.lockout_minutes)
            user.failed_login_count = 0
        await self.db.flush()
        return locked

    async def register_successful_login(self, user: User, now: datetime) -> None:
        user.failed_login_count = 0
        user.lockout_end = None
        user.last_login_at = now
        await self.db.flush()
