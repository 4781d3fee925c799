"""Pydantic models describing request bodies and catalog payloads."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import coerce_int, strip_html

EXPORT_VERSION = 1


class WatchToggle(BaseModel):
    watched: bool


class StatusOverrideUpdate(BaseModel):
    """Body of the status override endpoint; the value is checked by the service."""

    status: str | None = None


class AddShowRequest(BaseModel):
    catalog_show_id: int = Field(
        validation_alias=AliasChoices("catalogShowId", "tvmazeId", "id"),
    )


class Credentials(BaseModel):
    username: str = Field(min_length=1, max_length=120)
    password: str

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(
        validation_alias=AliasChoices("currentPassword", "current_password")
    )
    new_password: str = Field(
        validation_alias=AliasChoices("newPassword", "new_password")
    )


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ProfileSelect(BaseModel):
    profile_id: int = Field(validation_alias=AliasChoices("profileId", "id"))


class ExportedEpisode(BaseModel):
    """A watched episode inside the import/export document."""

    model_config = ConfigDict(populate_by_name=True)

    catalog_episode_id: int = Field(
        validation_alias=AliasChoices("catalogEpisodeId", "tvmazeEpisodeId"),
        serialization_alias="catalogEpisodeId",
    )
    watched_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("watchedAt", "watched_at"),
        serialization_alias="watchedAt",
    )


class ExportedShow(BaseModel):
    """A tracked show inside the import/export document."""

    model_config = ConfigDict(populate_by_name=True)

    catalog_show_id: int = Field(
        validation_alias=AliasChoices("catalogShowId", "tvmazeId"),
        serialization_alias="catalogShowId",
    )
    name: str = ""
    added_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("addedAt", "added_at"),
        serialization_alias="addedAt",
    )
    watched_episodes: list[ExportedEpisode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("watchedEpisodes", "watched_episodes"),
        serialization_alias="watchedEpisodes",
    )


class ExportDocument(BaseModel):
    """Versioned snapshot of a profile's shows and watch marks."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = EXPORT_VERSION
    exported_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("exportedAt", "exported_at"),
        serialization_alias="exportedAt",
    )
    shows: list[ExportedShow]

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CatalogShow(BaseModel):
    """Normalised show record returned by the catalog service."""

    catalog_id: int
    name: str
    summary: str = ""
    status: str | None = None
    premiered: str | None = None
    ended: str | None = None
    image_medium: str | None = None
    image_original: str | None = None
    imdb_id: str | None = None

    @classmethod
    def from_tvmaze(cls, data: dict[str, Any]) -> "CatalogShow":
        image = data.get("image") or {}
        externals = data.get("externals") or {}
        return cls(
            catalog_id=int(data["id"]),
            name=str(data.get("name") or "Untitled"),
            summary=strip_html(data.get("summary")),
            status=data.get("status"),
            premiered=data.get("premiered") or None,
            ended=data.get("ended") or None,
            image_medium=image.get("medium") if isinstance(image, dict) else None,
            image_original=image.get("original") if isinstance(image, dict) else None,
            imdb_id=externals.get("imdb") if isinstance(externals, dict) else None,
        )


class CatalogEpisode(BaseModel):
    """Normalised episode record returned by the catalog service."""

    catalog_id: int
    season: int
    number: int | None = None
    name: str | None = None
    summary: str = ""
    airdate: str | None = None
    airtime: str | None = None
    runtime: int | None = None
    image_medium: str | None = None
    image_original: str | None = None

    @classmethod
    def from_tvmaze(cls, data: dict[str, Any]) -> "CatalogEpisode":
        image = data.get("image") or {}
        return cls(
            catalog_id=int(data["id"]),
            season=coerce_int(data.get("season"), default=0) or 0,
            number=coerce_int(data.get("number")),
            name=data.get("name"),
            summary=strip_html(data.get("summary")),
            airdate=data.get("airdate") or None,
            airtime=data.get("airtime") or None,
            runtime=coerce_int(data.get("runtime")),
            image_medium=image.get("medium") if isinstance(image, dict) else None,
            image_original=image.get("original") if isinstance(image, dict) else None,
        )
