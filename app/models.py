"""Pydantic models describing AniList payloads and recognised media."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterator, Literal, Sequence, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .utils import SIMILARITY_THRESHOLD, best_similarity, clean_description

logger = logging.getLogger(__name__)

MediaType = Literal["ANIME", "MANGA"]
MediaListStatus = Literal[
    "CURRENT", "PLANNING", "COMPLETED", "DROPPED", "PAUSED", "REPEATING"
]
MediaFormat = Literal[
    "TV",
    "TV_SHORT",
    "MOVIE",
    "SPECIAL",
    "OVA",
    "ONA",
    "MUSIC",
    "MANGA",
    "NOVEL",
    "ONE_SHOT",
]
MediaRelation = Literal[
    "ADAPTATION",
    "PREQUEL",
    "SEQUEL",
    "PARENT",
    "SIDE_STORY",
    "CHARACTER",
    "SUMMARY",
    "ALTERNATIVE",
    "SPIN_OFF",
    "OTHER",
    "SOURCE",
    "COMPILATION",
    "CONTAINS",
]

# Statuses that move to CURRENT when the first episode/chapter is seen.
RESTARTABLE_STATUSES: frozenset[str] = frozenset(
    {"CURRENT", "PLANNING", "DROPPED", "PAUSED"}
)


def _known_or_none(value: object, allowed: tuple[str, ...], field: str) -> object:
    if value is None or value in allowed:
        return value
    logger.debug("Ignoring unknown AniList %s value %r", field, value)
    return None


def _present(values: object) -> object:
    """Drop the null slots AniList allows inside lists."""

    if values is None:
        return []
    if isinstance(values, list):
        return [value for value in values if value is not None]
    return values


class AniListModel(BaseModel):
    """Base model mapping AniList's camelCase keys onto snake_case fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FuzzyDate(AniListModel):
    """A date whose parts are independently optional."""

    year: int | None = None
    month: int | None = None
    day: int | None = None

    @classmethod
    def from_date(cls, value: date) -> "FuzzyDate":
        return cls(year=value.year, month=value.month, day=value.day)


class MediaTitle(AniListModel):
    romaji: str | None = None
    english: str | None = None
    native: str | None = None
    user_preferred: str | None = None


class MediaCoverImage(AniListModel):
    large: str | None = None
    medium: str | None = None


class ListEntryStub(AniListModel):
    """The viewer's tracking record as embedded in search results."""

    id: int
    status: MediaListStatus | None = None
    progress: int | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaListStatus), "status")


class MediaEdge(AniListModel):
    """A relation from one media to another."""

    relation_type: MediaRelation | None = None
    node: Media

    @field_validator("relation_type", mode="before")
    @classmethod
    def _known_relation(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaRelation), "relation")


class Media(AniListModel):
    """Catalog metadata about a single anime or manga."""

    id: int
    title: MediaTitle | None = None
    media_type: MediaType | None = Field(default=None, alias="type")
    format: MediaFormat | None = None
    synonyms: list[str] = Field(default_factory=list)
    episodes: int | None = None
    chapters: int | None = None
    volumes: int | None = None
    cover_image: MediaCoverImage | None = None
    description: str | None = None
    is_licensed: bool | None = None
    relations: list[MediaEdge] = Field(default_factory=list)
    media_list_entry: ListEntryStub | None = None

    @field_validator("synonyms", mode="before")
    @classmethod
    def _drop_null_synonyms(cls, value: object) -> object:
        return _present(value)

    @field_validator("relations", mode="before")
    @classmethod
    def _flatten_relations(cls, value: object) -> object:
        # AniList wraps edges in a connection object: {"edges": [...]}.
        if isinstance(value, dict):
            value = value.get("edges")
        edges = _present(value)
        if isinstance(edges, list):
            return [
                edge
                for edge in edges
                if not isinstance(edge, dict) or edge.get("node") is not None
            ]
        return edges

    @field_validator("format", mode="before")
    @classmethod
    def _known_format(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaFormat), "format")

    @field_validator("media_type", mode="before")
    @classmethod
    def _known_type(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaType), "type")

    def all_titles(self) -> list[str]:
        """Every name the media is known by, romaji first, then synonyms."""

        titles: list[str] = []
        if self.title is not None:
            for variant in (
                self.title.romaji,
                self.title.user_preferred,
                self.title.native,
                self.title.english,
            ):
                if variant:
                    titles.append(variant)
        titles.extend(synonym for synonym in self.synonyms if synonym)
        return titles

    def preferred_title(self) -> str | None:
        if self.title is None:
            return None
        return self.title.user_preferred or self.title.romaji or self.title.english

    @property
    def cover_url(self) -> str | None:
        if self.cover_image is None:
            return None
        return self.cover_image.large or self.cover_image.medium

    def clean_description(self) -> str | None:
        if not self.description:
            return None
        return clean_description(self.description)

    def is_oneshot(self) -> bool:
        return self.format == "ONE_SHOT"

    def tv_relations(self, relation: MediaRelation) -> list[Media]:
        """Related TV-format media of the given relation kind."""

        return [
            edge.node
            for edge in self.relations
            if edge.relation_type == relation and edge.node.format == "TV"
        ]

    def find_anime_prequels(self) -> list[Media]:
        return self.tv_relations("PREQUEL")

    def find_anime_sequel(self) -> Media | None:
        """Return the single TV sequel, or ``None`` when absent or ambiguous."""

        sequels = self.tv_relations("SEQUEL")
        if len(sequels) == 1:
            return sequels[0]
        return None


class MediaList(AniListModel):
    """One user's tracking record for one media item."""

    id: int
    media_id: int
    status: MediaListStatus | None = None
    progress: int | None = None
    progress_volumes: int | None = None
    score: float | None = None
    started_at: FuzzyDate | None = None
    completed_at: FuzzyDate | None = None
    media: Media | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaListStatus), "status")

    def update_progress(
        self,
        progress: float | None,
        progress_volumes: float | None = None,
        *,
        today: date | None = None,
    ) -> bool:
        """Apply newly observed progress, accepting only increases.

        ``progress_volumes`` is the 1-indexed volume currently being read; the
        stored counter is the number of completed volumes, so it is recorded
        as ``volume - 1``. Returns whether anything changed.
        """

        media = self.media
        if media is None or media.media_type is None:
            return False

        updated = False
        if progress is not None:
            observed = int(progress)
            if observed > (self.progress or 0):
                self.progress = observed
                updated = True

        if media.media_type == "MANGA" and progress_volumes is not None:
            completed_volumes = int(progress_volumes) - 1
            if completed_volumes > (self.progress_volumes or 0):
                self.progress_volumes = completed_volumes
                updated = True

        if updated:
            self._apply_status_triggers(media, today or date.today())
        return updated

    def _apply_status_triggers(self, media: Media, today: date) -> None:
        if self.progress == 1 and self.status in RESTARTABLE_STATUSES:
            self.status = "CURRENT"
            self.started_at = FuzzyDate.from_date(today)

        total = media.episodes if media.media_type == "ANIME" else media.chapters
        # Volume counts track completed volumes, so only the final episode or
        # chapter marks the entry finished.
        if total is not None and self.progress == total:
            self.status = "COMPLETED"
            self.completed_at = FuzzyDate.from_date(today)

    def progress_string(self) -> str:
        total = None
        if self.media is not None:
            if self.media.media_type == "MANGA":
                total = self.media.chapters
            else:
                total = self.media.episodes
        return _progress_string(self.progress, total)

    def progress_volumes_string(self) -> str:
        total = self.media.volumes if self.media is not None else None
        return _progress_string(self.progress_volumes, total)


def _progress_string(progress: int | None, total: int | None) -> str:
    maximum = str(total) if total is not None else "?"
    return f"{progress or 0} / {maximum}"


class MediaListGroup(AniListModel):
    """A named list (Watching, Completed, a custom list, ...)."""

    name: str | None = None
    status: MediaListStatus | None = None
    is_custom_list: bool = False
    is_split_completed_list: bool = False
    entries: list[MediaList] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def _drop_null_entries(cls, value: object) -> object:
        return _present(value)

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: object) -> object:
        return _known_or_none(value, get_args(MediaListStatus), "status")

    @field_validator("is_custom_list", "is_split_completed_list", mode="before")
    @classmethod
    def _null_is_false(cls, value: object) -> object:
        return False if value is None else value


class MediaListCollection(AniListModel):
    """In-memory mirror of one category of the user's lists."""

    lists: list[MediaListGroup] = Field(default_factory=list)

    @field_validator("lists", mode="before")
    @classmethod
    def _drop_null_groups(cls, value: object) -> object:
        return _present(value)

    @model_validator(mode="after")
    def _unique_media_ids(self) -> "MediaListCollection":
        # Custom lists repeat entries that already live in a status list.
        seen: set[int] = set()
        for group in self.lists:
            kept: list[MediaList] = []
            for entry in group.entries:
                if entry.media_id in seen:
                    logger.debug(
                        "Skipping duplicate media %s in list %s",
                        entry.media_id,
                        group.name,
                    )
                    continue
                seen.add(entry.media_id)
                kept.append(entry)
            group.entries = kept
        return self

    def entries(self) -> Iterator[MediaList]:
        for group in self.lists:
            yield from group.entries

    def __len__(self) -> int:
        return sum(len(group.entries) for group in self.lists)

    def find_entry_by_id(self, media_id: int) -> MediaList | None:
        """Return the live entry tracking ``media_id``."""

        for entry in self.entries():
            if entry.media_id == media_id:
                return entry
        return None

    def search_for_title(self, query: str) -> MediaList | None:
        """Return the entry whose titles best resemble ``query``.

        Only similarities of at least ``SIMILARITY_THRESHOLD`` qualify; ties
        keep the first entry seen.
        """

        best_entry: MediaList | None = None
        best_score = 0.0
        for entry in self.entries():
            if entry.media is None:
                continue
            score = best_similarity(entry.media.all_titles(), query)
            if score < SIMILARITY_THRESHOLD or score <= best_score:
                continue
            best_entry = entry
            best_score = score
            if best_score >= 1.0:
                break
        return best_entry

    @staticmethod
    def best_id_for_search(
        candidates: Sequence[Media], query: str, oneshot: bool
    ) -> int | None:
        """Pick the tracked search result best matching ``query``.

        Candidates the viewer does not track, or whose format does not match
        the oneshot filter, are ignored. Licensed media win similarity ties.
        """

        best_id: int | None = None
        best_score = 0.0
        best_is_licensed = False
        for media in candidates:
            if media.media_list_entry is None or media.format is None:
                continue
            if media.is_oneshot() != oneshot:
                continue
            licensed = bool(media.is_licensed)
            score = best_similarity(media.all_titles(), query)
            if score < SIMILARITY_THRESHOLD:
                continue
            if score > best_score or (
                score == best_score and licensed and not best_is_licensed
            ):
                best_id = media.id
                best_score = score
                best_is_licensed = licensed
        return best_id


class RecognizedMedia(BaseModel):
    """The structured result of matching a window title."""

    model_config = ConfigDict(frozen=True)

    title: str
    media_type: MediaType
    progress: float | None = None
    progress_volumes: float | None = None
    oneshot: bool = False

    def describe(self) -> str:
        """Return a short human-readable summary of the recognised progress."""

        if self.media_type == "ANIME":
            if self.progress is None:
                return "Watching"
            return f"Watching Episode {_format_number(self.progress)}"
        if self.oneshot:
            return "Reading Oneshot"
        parts: list[str] = []
        if self.progress_volumes is not None:
            parts.append(f"Vol. {_format_number(self.progress_volumes)}")
        if self.progress is not None:
            parts.append(f"Ch. {_format_number(self.progress)}")
        if not parts:
            return "Reading"
        return "Reading " + ", ".join(parts)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class UserAvatar(AniListModel):
    large: str | None = None
    medium: str | None = None


class User(AniListModel):
    """The authenticated AniList viewer."""

    id: int
    name: str
    avatar: UserAvatar | None = None

    @property
    def avatar_url(self) -> str | None:
        if self.avatar is None:
            return None
        return self.avatar.medium or self.avatar.large

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "avatar": self.avatar_url}


MediaEdge.model_rebuild()
Media.model_rebuild()
MediaList.model_rebuild()
