"""Utilities for communicating with the AniList GraphQL API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import Media, MediaList, MediaListCollection, MediaType, User

logger = logging.getLogger(__name__)

MEDIA_FIELDS = """
    id
    type
    format
    episodes
    chapters
    volumes
    isLicensed
    synonyms
    description
    title { romaji english native userPreferred }
    coverImage { large medium }
"""

VIEWER_QUERY = """
query {
    Viewer {
        id
        name
        avatar { large medium }
    }
}
"""

MEDIA_LIST_COLLECTION_QUERY = (
    """
query ($id: Int, $type: MediaType) {
    MediaListCollection(userId: $id, type: $type) {
        lists {
            name
            status
            isCustomList
            isSplitCompletedList
            entries {
                id
                mediaId
                status
                progress
                progressVolumes
                score
                startedAt { year month day }
                completedAt { year month day }
                media {
"""
    + MEDIA_FIELDS
    + """
                    relations {
                        edges {
                            relationType
                            node { id type format episodes chapters volumes }
                        }
                    }
                }
            }
        }
    }
}
"""
)

SEARCH_QUERY = (
    """
query ($search: String, $mediaType: MediaType) {
    Page(page: 1, perPage: 25) {
        media(search: $search, type: $mediaType) {
"""
    + MEDIA_FIELDS
    + """
            mediaListEntry { id status progress }
        }
    }
}
"""
)

SAVE_MEDIA_LIST_ENTRY_MUTATION = """
mutation (
    $id: Int,
    $status: MediaListStatus,
    $progress: Int,
    $progressVolumes: Int,
    $startedAt: FuzzyDateInput,
    $completedAt: FuzzyDateInput
) {
    SaveMediaListEntry(
        id: $id,
        status: $status,
        progress: $progress,
        progressVolumes: $progressVolumes,
        startedAt: $startedAt,
        completedAt: $completedAt
    ) {
        id
        mediaId
        status
        progress
        progressVolumes
        score
        startedAt { year month day }
        completedAt { year month day }
    }
}
"""


class AniListError(RuntimeError):
    """Raised when an AniList request cannot produce usable data."""


class AniListClient:
    """Thin wrapper around the AniList GraphQL endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": f"{self._settings.app_name} (fubuki)",
        }

    def _retry_after(self, response: httpx.Response) -> int:
        header_value = response.headers.get("retry-after")
        if not header_value:
            return self._settings.anilist_retry_after_seconds
        try:
            return max(0, int(header_value))
        except (TypeError, ValueError):
            return self._settings.anilist_retry_after_seconds

    async def query(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL document and return its ``data`` object.

        Rate-limited responses are retried after the server's ``Retry-After``
        delay, up to the configured number of attempts.
        """

        resolved_token = token or self._settings.anilist_token
        if not resolved_token:
            raise AniListError("No AniList token provided")

        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        max_attempts = self._settings.anilist_max_retries
        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._client.post(
                    "", json=payload, headers=self._headers(resolved_token)
                )
            except httpx.HTTPError as exc:
                raise AniListError(
                    f"Transport error talking to AniList: {exc.__class__.__name__}"
                ) from exc

            if response.status_code == 429:
                backoff = self._retry_after(response)
                logger.info(
                    "AniList rate limit hit (attempt %s/%s). Retrying in %ss",
                    attempt,
                    max_attempts,
                    backoff,
                )
                await asyncio.sleep(backoff)
                continue

            try:
                body = response.json()
            except ValueError as exc:
                raise AniListError(
                    f"Unexpected non-JSON AniList response ({response.status_code})"
                ) from exc
            if not isinstance(body, dict):
                raise AniListError("Unexpected AniList response structure")

            errors = body.get("errors") or []
            data = body.get("data")
            if errors and not data:
                messages = ", ".join(
                    str(error.get("message"))
                    for error in errors
                    if isinstance(error, dict)
                )
                raise AniListError(
                    f"AniList returned errors ({response.status_code}): {messages}"
                )
            if response.status_code >= 400 or not isinstance(data, dict):
                raise AniListError(
                    f"AniList request failed with status {response.status_code}"
                )
            return data

        raise AniListError(
            f"Exceeded the maximum rate limit count ({max_attempts})"
        )

    async def fetch_viewer(self, *, token: str | None = None) -> User | None:
        """Return the authenticated user's profile."""

        try:
            data = await self.query(VIEWER_QUERY, token=token)
            viewer = data.get("Viewer")
            if not isinstance(viewer, dict):
                logger.warning("Unexpected AniList viewer structure")
                return None
            return User.model_validate(viewer)
        except AniListError as exc:
            logger.warning("Failed to fetch AniList viewer: %s", exc)
        except ValidationError as exc:
            logger.warning("Could not parse AniList viewer: %s", exc)
        return None

    async def fetch_lists(
        self,
        user_id: int,
        media_type: MediaType,
        *,
        token: str | None = None,
    ) -> MediaListCollection | None:
        """Fetch one category of the user's lists."""

        try:
            data = await self.query(
                MEDIA_LIST_COLLECTION_QUERY,
                {"id": user_id, "type": media_type},
                token=token,
            )
            collection = data.get("MediaListCollection")
            if not isinstance(collection, dict):
                logger.warning("Unexpected AniList %s list structure", media_type)
                return None
            return MediaListCollection.model_validate(collection)
        except AniListError as exc:
            logger.warning("Failed to fetch AniList %s lists: %s", media_type, exc)
        except ValidationError as exc:
            logger.warning("Could not parse AniList %s lists: %s", media_type, exc)
        return None

    async def fetch_all_lists(
        self, user_id: int, *, token: str | None = None
    ) -> tuple[MediaListCollection | None, MediaListCollection | None]:
        """Fetch the anime and manga lists concurrently."""

        anime, manga = await asyncio.gather(
            self.fetch_lists(user_id, "ANIME", token=token),
            self.fetch_lists(user_id, "MANGA", token=token),
        )
        return anime, manga

    async def search(
        self,
        search: str,
        media_type: MediaType,
        *,
        token: str | None = None,
    ) -> list[Media]:
        """Search AniList for media matching ``search``."""

        try:
            data = await self.query(
                SEARCH_QUERY,
                {"search": search, "mediaType": media_type},
                token=token,
            )
        except AniListError as exc:
            logger.warning("AniList search for %r failed: %s", search, exc)
            return []

        page = data.get("Page")
        raw_media = page.get("media") if isinstance(page, dict) else None
        if not isinstance(raw_media, list):
            return []
        results: list[Media] = []
        for item in raw_media:
            if not isinstance(item, dict):
                continue
            try:
                results.append(Media.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping unparseable search result: %s", exc)
        return results

    async def push_update(
        self, entry: MediaList, *, token: str | None = None
    ) -> MediaList | None:
        """Save ``entry``'s status, progress and dates upstream."""

        variables: dict[str, Any] = {
            "id": entry.id,
            "status": entry.status,
            "progress": entry.progress,
            "progressVolumes": entry.progress_volumes or 0,
            "startedAt": (
                entry.started_at.model_dump() if entry.started_at else None
            ),
            "completedAt": (
                entry.completed_at.model_dump() if entry.completed_at else None
            ),
        }
        try:
            data = await self.query(
                SAVE_MEDIA_LIST_ENTRY_MUTATION, variables, token=token
            )
            saved = data.get("SaveMediaListEntry")
            if not isinstance(saved, dict):
                logger.warning("Unexpected AniList save response for media %s", entry.media_id)
                return None
            return MediaList.model_validate(saved)
        except AniListError as exc:
            logger.warning("Failed to update media %s on AniList: %s", entry.media_id, exc)
        except ValidationError as exc:
            logger.warning("Could not parse AniList save response: %s", exc)
        return None
