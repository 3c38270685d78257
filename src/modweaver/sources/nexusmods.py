"""Nexus Mods backend.

Metadata and files come from the v1 REST API, search and requirements from the
v2 GraphQL API. A fresh ``NexusClient`` is opened per call so the source holds
no connection state between operations.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from modweaver.errors import (
    AuthNotSupportedError,
    AuthRequiredError,
    DownloadFailedError,
    ModNotFoundError,
)
from modweaver.nexus.client import (
    BASE_URL,
    ModRequirementsRequest,
    ModSearchRequest,
    NexusClient,
)
from modweaver.schemas.mod import DownloadableFile, Mod, ModReference
from modweaver.sources.base import FileListing, ModSource, SearchQuery, Token

logger = logging.getLogger(__name__)

SOURCE_ID = "nexusmods"


def _int_id(value: str, what: str = "mod") -> int:
    try:
        return int(value)
    except ValueError:
        raise ModNotFoundError(f"invalid {what} ID: {value!r}") from None


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def mod_from_api(data: dict[str, Any], game_domain: str) -> Mod:
    uploader = data.get("uploader") or {}
    category = data.get("category_id")
    return Mod(
        id=str(data.get("mod_id") or data.get("modId") or ""),
        source_id=SOURCE_ID,
        name=data.get("name") or "",
        version=data.get("version") or "",
        author=data.get("author") or uploader.get("name") or "",
        summary=data.get("summary") or "",
        description=data.get("description") or "",
        game_id=game_domain,
        category=str(category) if category is not None else "",
        downloads=data.get("mod_downloads") or 0,
        endorsements=data.get("endorsement_count") or 0,
        updated_at=_timestamp(data.get("updated_timestamp")),
    )


def file_from_api(data: dict[str, Any]) -> DownloadableFile:
    size = data.get("size_in_bytes")
    if size is None:
        size = (data.get("size_kb") or 0) * 1024 or data.get("size") or 0
    return DownloadableFile(
        id=str(data["file_id"]),
        name=data.get("name") or "",
        file_name=data.get("file_name") or "",
        version=data.get("version") or "",
        size=size,
        is_primary=bool(data.get("is_primary")),
        category=data.get("category_name") or "",
        description=data.get("description") or "",
        changelog=data.get("changelog_html") or "",
    )


class NexusModsSource(ModSource):
    def __init__(self, api_key: str = "", *, base_url: str = BASE_URL) -> None:
        self._api_key = api_key
        self._base_url = base_url

    @property
    def id(self) -> str:
        return SOURCE_ID

    @property
    def name(self) -> str:
        return "Nexus Mods"

    def _client(self, api_key: str | None = None) -> NexusClient:
        return NexusClient(self._api_key if api_key is None else api_key, base_url=self._base_url)

    async def search(self, query: SearchQuery) -> list[Mod]:
        page_size = query.page_size or 20
        request = ModSearchRequest(
            game_domain=query.game_id,
            query=query.query,
            category=query.category,
            count=page_size,
            offset=query.page * page_size,
        )
        async with self._client() as client:
            nodes = await client.search_mods(request)
        return [mod_from_api(node, query.game_id) for node in nodes]

    async def get_mod(self, game_id: str, mod_id: str) -> Mod:
        nexus_id = _int_id(mod_id)
        try:
            async with self._client() as client:
                data = await client.get_mod_info(game_id, nexus_id)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise ModNotFoundError(f"mod {mod_id} not found on {game_id}") from e
            raise
        return mod_from_api(data, game_id)

    async def get_dependencies(self, mod: Mod) -> list[ModReference]:
        request = ModRequirementsRequest(game_domain=mod.game_id, mod_id=_int_id(mod.id))
        async with self._client() as client:
            requirements = await client.get_mod_requirements(request)
        return [ModReference(source_id=SOURCE_ID, mod_id=str(r.mod_id)) for r in requirements]

    async def get_mod_files(self, mod: Mod) -> list[DownloadableFile]:
        return (await self.get_file_listing(mod)).files

    async def get_file_listing(self, mod: Mod) -> FileListing:
        async with self._client() as client:
            data = await client.get_mod_files(mod.game_id, _int_id(mod.id))
        supersedes = {
            str(fu["old_file_id"]): str(fu["new_file_id"]) for fu in data.get("file_updates") or []
        }
        return FileListing(
            files=[file_from_api(f) for f in data.get("files") or []],
            supersedes=supersedes,
        )

    async def get_download_url(self, mod: Mod, file_id: str) -> str:
        async with self._client() as client:
            links = await client.get_download_links(
                mod.game_id, _int_id(mod.id), _int_id(file_id, "file")
            )
        if not links:
            raise DownloadFailedError(f"no download links available for {mod.key} file {file_id}")
        return links[0]["URI"]

    def is_authenticated(self) -> bool:
        return bool(self._api_key)

    def set_api_key(self, key: str) -> None:
        self._api_key = key

    async def validate_api_key(self, key: str) -> None:
        async with self._client(key) as client:
            result = await client.validate_key()
        if not result.valid:
            raise AuthRequiredError(f"invalid Nexus Mods API key: {result.error}")
        logger.info("Validated Nexus Mods API key for %s", result.username or "unknown user")

    async def exchange_token(self, code: str) -> Token:
        raise AuthNotSupportedError("Nexus Mods uses API key authentication, not OAuth")
