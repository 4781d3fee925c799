"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class User(Base):
    """An account owning one or more viewer profiles."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(120), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    last_profile_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    profiles: Mapped[list["Profile"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Profile(Base):
    """A named viewer persona holding its own subscriptions and watch marks."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE")
    )
    name: Mapped[str] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="profiles")


class SessionRecord(Base):
    """Server-side login session referenced by an opaque cookie value."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE")
    )
    profile_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Show(Base):
    """Series metadata mirrored from the catalog, keyed by its catalog id."""

    __tablename__ = "shows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tvmaze_id: Mapped[int] = mapped_column(Integer, unique=True)
    name: Mapped[str] = mapped_column(String(255))
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    premiered: Mapped[str | None] = mapped_column(String(10), nullable=True)
    ended: Mapped[str | None] = mapped_column(String(10), nullable=True)
    image_medium: Mapped[str | None] = mapped_column(String(512), nullable=True)
    image_original: Mapped[str | None] = mapped_column(String(512), nullable=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Episode(Base):
    """A single episode; ``airdate`` is an ISO calendar date string."""

    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    show_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shows.id", ondelete="CASCADE"), index=True
    )
    tvmaze_id: Mapped[int] = mapped_column(Integer, unique=True)
    season: Mapped[int] = mapped_column(Integer)
    number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    airdate: Mapped[str | None] = mapped_column(String(10), nullable=True)
    airtime: Mapped[str | None] = mapped_column(String(16), nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_medium: Mapped[str | None] = mapped_column(String(512), nullable=True)
    image_original: Mapped[str | None] = mapped_column(String(512), nullable=True)


class ProfileShow(Base):
    """A profile's subscription to a show plus its optional status override."""

    __tablename__ = "profile_shows"

    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    show_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shows.id", ondelete="CASCADE"), primary_key=True
    )
    # ISO-8601 text, kept verbatim so exports round-trip exactly.
    created_at: Mapped[str] = mapped_column(String(40))
    status: Mapped[str | None] = mapped_column(String(16), nullable=True)


class WatchMark(Base):
    """Presence means the profile watched the episode."""

    __tablename__ = "profile_episodes"
    __table_args__ = (
        Index("idx_profile_episodes_profile_id", "profile_id"),
    )

    profile_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    episode_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("episodes.id", ondelete="CASCADE"), primary_key=True
    )
    watched_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
