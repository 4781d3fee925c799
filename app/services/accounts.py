"""Users, login sessions and viewer profiles."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Profile, SessionRecord, User
from ..errors import AuthError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_SCRYPT_PARAMS = {"n": 2**14, "r": 8, "p": 1}


def hash_password(password: str, *, salt: bytes | None = None) -> str:
    """Return a ``scrypt$salt$digest`` string for ``password``."""

    salt = salt or secrets.token_bytes(16)
    digest = hashlib.scrypt(password.encode("utf-8"), salt=salt, **_SCRYPT_PARAMS)
    return f"scrypt${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, salt_hex, digest_hex = stored.split("$", 2)
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    candidate = hashlib.scrypt(
        password.encode("utf-8"), salt=bytes.fromhex(salt_hex), **_SCRYPT_PARAMS
    )
    return hmac.compare_digest(candidate.hex(), digest_hex)


@dataclass(slots=True)
class SessionContext:
    """The authenticated user behind a request and their active profile."""

    session_id: str
    user_id: int
    username: str
    profile_id: int | None

    def require_profile(self) -> int:
        if self.profile_id is None:
            raise AuthError("No active profile", status_code=400)
        return self.profile_id


class AccountService:
    """Registers users, issues sessions and manages profiles."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._settings = settings
        self._session_factory = session_factory

    async def register(self, username: str, password: str) -> str:
        """Create a user and return a fresh session id."""

        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        async with self._session_factory() as session:
            user = User(username=username, password_hash=hash_password(password))
            session.add(user)
            try:
                await session.flush()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("Username already taken") from exc
            session_id = self._add_session(session, user.id, None)
            await session.commit()
        logger.info("Registered user %s", username)
        return session_id

    async def login(self, username: str, password: str) -> str:
        async with self._session_factory() as session:
            user = (
                await session.execute(select(User).where(User.username == username))
            ).scalar_one_or_none()
            if user is None or not verify_password(password, user.password_hash):
                raise AuthError("Invalid username or password")
            profile_id = await self._usable_profile(session, user.id, user.last_profile_id)
            session_id = self._add_session(session, user.id, profile_id)
            await session.commit()
        return session_id

    async def logout(self, session_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(SessionRecord).where(SessionRecord.id == session_id)
            )
            await session.commit()

    async def change_password(
        self, context: SessionContext, current_password: str, new_password: str
    ) -> None:
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        async with self._session_factory() as session:
            user = await session.get(User, context.user_id)
            if user is None or not verify_password(current_password, user.password_hash):
                raise AuthError("Current password is incorrect")
            user.password_hash = hash_password(new_password)
            await session.commit()

    async def resolve_session(self, session_id: str | None) -> SessionContext:
        """Return the context for a session cookie or raise ``AuthError``."""

        if not session_id:
            raise AuthError("Not authenticated")
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(SessionRecord, User)
                    .join(User, User.id == SessionRecord.user_id)
                    .where(SessionRecord.id == session_id)
                )
            ).first()
            if row is None:
                raise AuthError("Not authenticated")
            record, user = row
            if record.expires_at <= datetime.utcnow():
                await session.delete(record)
                await session.commit()
                raise AuthError("Session expired")
            return SessionContext(
                session_id=record.id,
                user_id=user.id,
                username=user.username,
                profile_id=record.profile_id,
            )

    async def purge_expired_sessions(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SessionRecord).where(
                    SessionRecord.expires_at <= datetime.utcnow()
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def list_profiles(self, user_id: int) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Profile).where(Profile.user_id == user_id).order_by(Profile.id)
            )
            return [self._profile_payload(profile) for profile in result.scalars()]

    async def create_profile(self, user_id: int, name: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            profile = Profile(user_id=user_id, name=name)
            session.add(profile)
            await session.commit()
            return self._profile_payload(profile)

    async def select_profile(self, context: SessionContext, profile_id: int) -> None:
        async with self._session_factory() as session:
            profile = await session.get(Profile, profile_id)
            if profile is None or profile.user_id != context.user_id:
                raise NotFoundError("Profile not found")
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.id == context.session_id)
                .values(profile_id=profile_id)
            )
            await session.execute(
                update(User)
                .where(User.id == context.user_id)
                .values(last_profile_id=profile_id)
            )
            await session.commit()

    async def delete_profile(self, context: SessionContext, profile_id: int) -> None:
        """Delete a profile; its links and watch marks cascade with it."""

        async with self._session_factory() as session:
            profile = await session.get(Profile, profile_id)
            if profile is None or profile.user_id != context.user_id:
                raise NotFoundError("Profile not found")
            await session.delete(profile)
            await session.execute(
                update(SessionRecord)
                .where(SessionRecord.profile_id == profile_id)
                .values(profile_id=None)
            )
            await session.execute(
                update(User)
                .where(User.last_profile_id == profile_id)
                .values(last_profile_id=None)
            )
            await session.commit()
        logger.info("User %s deleted profile %s", context.user_id, profile_id)

    async def list_profile_owners(self) -> list[tuple[int, int]]:
        """Return ``(user_id, profile_id)`` pairs for every profile."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(Profile.user_id, Profile.id).order_by(Profile.user_id, Profile.id)
            )
            return [(user_id, profile_id) for user_id, profile_id in result.all()]

    def _add_session(
        self, session: AsyncSession, user_id: int, profile_id: int | None
    ) -> str:
        session_id = secrets.token_urlsafe(32)
        session.add(
            SessionRecord(
                id=session_id,
                user_id=user_id,
                profile_id=profile_id,
                expires_at=datetime.utcnow()
                + timedelta(seconds=self._settings.session_ttl_seconds),
            )
        )
        return session_id

    @staticmethod
    async def _usable_profile(
        session: AsyncSession, user_id: int, profile_id: int | None
    ) -> int | None:
        if profile_id is None:
            return None
        profile = await session.get(Profile, profile_id)
        if profile is None or profile.user_id != user_id:
            return None
        return profile.id

    @staticmethod
    def _profile_payload(profile: Profile) -> dict[str, Any]:
        return {
            "id": profile.id,
            "name": profile.name,
            "createdAt": profile.created_at.isoformat() if profile.created_at else None,
        }
