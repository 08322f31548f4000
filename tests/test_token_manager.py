import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from conftest import make_user
from tradejournal.auth import decode_access_token, hash_token, utcnow
from tradejournal.errors import Forbidden, InvalidOrExpiredToken, TokenReuseDetected
from tradejournal.models import RefreshToken
from tradejournal.services.token_manager import LogoutResult, RefreshTokenManager
from tradejournal.services.token_store import SqlTokenStore
from tradejournal.services.user_store import UserStore


def _manager(db, clock=utcnow) -> RefreshTokenManager:
    return RefreshTokenManager(SqlTokenStore(db), UserStore(db), clock=clock)


async def _row(db, plaintext: str) -> RefreshToken:
    return await db.scalar(
        select(RefreshToken).where(RefreshToken.token_hash == hash_token(plaintext))
    )


class TestIssue:
    async def test_issue_stores_only_the_hash(self, db, user):
        issued = await _manager(db).issue(user, ["trader"])

        rows = (await db.scalars(select(RefreshToken))).all()
        assert len(rows) == 1
        assert rows[0].token_hash == hash_token(issued.refresh_token)
        assert rows[0].token_hash != issued.refresh_token
        assert rows[0].token_family == issued.token_family
        assert rows[0].revoked_at is None

    async def test_issue_returns_access_token(self, db, user):
        issued = await _manager(db).issue(user, ["trader"])

        payload = decode_access_token(issued.access_token)
        assert payload["sub"] == str(user.id)
        assert payload["roles"] == ["trader"]
        assert issued.expires_in_seconds == 60 * 60

    async def test_each_login_starts_a_new_family(self, db, user):
        manager = _manager(db)
        first = await manager.issue(user, [])
        second = await manager.issue(user, [])
        assert first.token_family != second.token_family

    async def test_remember_me_gets_longer_lifetime(self, db, user):
        manager = _manager(db)
        short = await manager.issue(user, [], remember_me=False)
        long = await manager.issue(user, [], remember_me=True)

        short_row = await _row(db, short.refresh_token)
        long_row = await _row(db, long.refresh_token)
        assert short_row.expires_at - short_row.created_at == timedelta(days=1)
        assert long_row.expires_at - long_row.created_at == timedelta(days=7)
        assert long_row.expires_at > short_row.expires_at


class TestRefresh:
    async def test_refresh_rotates(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [], ip="10.0.0.1")

        rotated = await manager.refresh(login.refresh_token, ip="10.0.0.2")

        assert rotated.refresh_token != login.refresh_token
        assert rotated.token_family == login.token_family
        old = await _row(db, login.refresh_token)
        new = await _row(db, rotated.refresh_token)
        assert old.revoked_at is not None
        assert old.revoked_by_ip == "10.0.0.2"
        assert new.revoked_at is None
        assert new.created_by_ip == "10.0.0.2"

    async def test_unknown_token(self, db, user):
        with pytest.raises(InvalidOrExpiredToken) as exc_info:
            await _manager(db).refresh("not-a-real-token")
        assert exc_info.value.reason == "invalid"
        assert not isinstance(exc_info.value, TokenReuseDetected)

    async def test_single_use(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [])
        await manager.refresh(login.refresh_token)

        with pytest.raises(InvalidOrExpiredToken):
            await manager.refresh(login.refresh_token)

    async def test_family_propagates_through_rotations(self, db, user):
        manager = _manager(db)
        current = await manager.issue(user, [])
        family = current.token_family
        secrets = [current.refresh_token]
        for _ in range(5):
            current = await manager.refresh(current.refresh_token)
            secrets.append(current.refresh_token)

        rows = [await _row(db, s) for s in secrets]
        assert {r.token_family for r in rows} == {family}
        assert [r.revoked_at is None for r in rows] == [False] * 5 + [True]

    async def test_reuse_revokes_whole_family(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [])
        unrelated = await manager.issue(user, [])
        r2 = await manager.refresh(login.refresh_token)

        with pytest.raises(TokenReuseDetected):
            await manager.refresh(login.refresh_token)

        assert (await _row(db, r2.refresh_token)).revoked_at is not None
        assert (await _row(db, unrelated.refresh_token)).revoked_at is None
        with pytest.raises(InvalidOrExpiredToken):
            await manager.refresh(r2.refresh_token)

    async def test_login_refresh_reuse_scenario(self, db, user):
        manager = _manager(db)
        a1 = await manager.issue(user, [])
        r1 = a1.refresh_token

        a2 = await manager.refresh(r1)
        r2 = a2.refresh_token
        assert a2.token_family == a1.token_family
        assert (await _row(db, r1)).revoked_at is not None

        with pytest.raises(TokenReuseDetected) as exc_info:
            await manager.refresh(r1)
        assert exc_info.value.error_code == "TOKEN_REUSE_DETECTED"
        assert (await _row(db, r2)).revoked_at is not None

        with pytest.raises(InvalidOrExpiredToken):
            await manager.refresh(r2)

    async def test_expired_token_rejected(self, db, user):
        login = await _manager(db).issue(user, [])
        later = _manager(db, clock=lambda: utcnow() + timedelta(days=2))

        with pytest.raises(InvalidOrExpiredToken) as exc_info:
            await later.refresh(login.refresh_token)
        assert exc_info.value.reason == "expired"
        assert (await _row(db, login.refresh_token)).revoked_at is None

    async def test_rotation_keeps_remember_me_lifetime(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [], remember_me=True)
        rotated = await manager.refresh(login.refresh_token)

        row = await _row(db, rotated.refresh_token)
        assert row.expires_at - row.created_at == timedelta(days=7)

    async def test_lost_race_is_treated_as_reuse(self, db, user):
        class StaleReadStore(SqlTokenStore):
            async def find_by_hash(self, token_hash):
                row = await super().find_by_hash(token_hash)
                # A concurrent request rotates the token right after our read.
                await self.db.execute(
                    update(RefreshToken)
                    .where(RefreshToken.id == row.id)
                    .values(revoked_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                return row

        login = await _manager(db).issue(user, [])
        sibling = RefreshToken(
            user_id=user.id,
            token_hash=hash_token("sibling"),
            token_family=login.token_family,
            created_at=utcnow(),
            expires_at=utcnow() + timedelta(days=1),
        )
        db.add(sibling)
        await db.commit()

        racing = RefreshTokenManager(StaleReadStore(db), UserStore(db))
        with pytest.raises(TokenReuseDetected):
            await racing.refresh(login.refresh_token)

        await db.refresh(sibling)
        assert sibling.revoked_at is not None
        family_rows = (
            await db.scalars(
                select(RefreshToken).where(RefreshToken.token_family == login.token_family)
            )
        ).all()
        assert len(family_rows) == 2

    async def test_deleted_user_cannot_refresh(self, db, user):
        manager = RefreshTokenManager(SqlTokenStore(db), _NoUsers())
        login = await _manager(db).issue(user, [])

        with pytest.raises(InvalidOrExpiredToken):
            await manager.refresh(login.refresh_token)
        assert (await _row(db, login.refresh_token)).revoked_at is None


class _NoUsers:
    async def get_by_id(self, user_id):
        return None

    async def role_names(self, user):
        return []


class TestLogout:
    async def test_logout_revokes(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [])

        assert await manager.logout(login.refresh_token, user.id) is LogoutResult.revoked
        assert (await _row(db, login.refresh_token)).revoked_at is not None
        with pytest.raises(InvalidOrExpiredToken):
            await manager.refresh(login.refresh_token)

    async def test_logout_is_idempotent(self, db, user):
        manager = _manager(db)
        login = await manager.issue(user, [])

        await manager.logout(login.refresh_token, user.id)
        result = await manager.logout(login.refresh_token, user.id)
        assert result is LogoutResult.already_revoked

    async def test_logout_unknown_token(self, db, user):
        result = await _manager(db).logout("never-issued", user.id)
        assert result is LogoutResult.not_found

    async def test_cross_user_logout_forbidden(self, db, user):
        other = await make_user(db)
        manager = _manager(db)
        login = await manager.issue(user, [])

        with pytest.raises(Forbidden):
            await manager.logout(login.refresh_token, other.id)

        row = await _row(db, login.refresh_token)
        assert row.revoked_at is None
        assert (await manager.refresh(login.refresh_token)).token_family == login.token_family


class TestRevokeAllForUser:
    async def test_revokes_every_family(self, db, user):
        other = await make_user(db)
        manager = _manager(db)
        first = await manager.issue(user, [])
        second = await manager.issue(user, [], remember_me=True)
        theirs = await manager.issue(other, [])

        assert await manager.revoke_all_for_user(user.id) == 2

        for issued in (first, second):
            with pytest.raises(InvalidOrExpiredToken):
                await manager.refresh(issued.refresh_token)
        assert (await _row(db, theirs.refresh_token)).revoked_at is None

    async def test_unknown_user(self, db):
        assert await _manager(db).revoke_all_for_user(uuid.uuid4()) == 0
