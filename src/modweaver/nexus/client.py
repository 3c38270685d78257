import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

import httpx

from modweaver.errors import AuthRequiredError, ModweaverError
from modweaver.schemas.nexus import NexusKeyResult, NexusRequirement

logger = logging.getLogger(__name__)

BASE_URL = "https://api.nexusmods.com"
GRAPHQL_PATH = "/v2/graphql"

SEARCH_MODS_QUERY = """
query SearchMods($filter: ModsFilter, $count: Int, $offset: Int) {
  mods(filter: $filter, count: $count, offset: $offset) {
    nodes {
      modId
      name
      summary
      version
      uploader { name }
    }
  }
}"""

MOD_REQUIREMENTS_QUERY = """
query ModRequirements($modId: Int!, $gameDomainName: String!) {
  modRequirements(modId: $modId, gameDomainName: $gameDomainName) {
    nexusRequirements {
      nodes {
        modId
        modName
      }
    }
  }
}"""


class NexusRateLimitError(ModweaverError):
    def __init__(self, hourly_remaining: int, daily_remaining: int, reset: str) -> None:
        self.hourly_remaining = hourly_remaining
        self.daily_remaining = daily_remaining
        self.reset = reset
        super().__init__(f"Rate limited (hourly={hourly_remaining}, daily={daily_remaining})")


class NexusPremiumRequiredError(ModweaverError):
    pass


class NexusGraphQLError(ModweaverError):
    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        super().__init__(f"GraphQL errors: {'; '.join(messages)}")


def _filter_equals(value: Any) -> list[dict[str, Any]]:
    return [{"value": value, "op": "EQUALS"}]


@dataclass
class ModSearchRequest:
    game_domain: str
    query: str = ""
    category: str = ""
    count: int = 20
    offset: int = 0

    def to_payload(self) -> dict[str, Any]:
        filter_: dict[str, Any] = {
            "gameDomainName": _filter_equals(self.game_domain),
            "name": [{"value": self.query, "op": "WILDCARD"}],
        }
        if self.category:
            filter_["categoryId"] = _filter_equals(self.category)
        return {
            "query": SEARCH_MODS_QUERY,
            "variables": {"filter": filter_, "count": self.count, "offset": self.offset},
        }


@dataclass
class ModRequirementsRequest:
    game_domain: str
    mod_id: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "query": MOD_REQUIREMENTS_QUERY,
            "variables": {"modId": self.mod_id, "gameDomainName": self.game_domain},
        }


class NexusClient:
    def __init__(self, api_key: str, *, base_url: str = BASE_URL) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._client: httpx.AsyncClient | None = None
        self.hourly_remaining: int | None = None
        self.daily_remaining: int | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"APIKEY": self._api_key, "Accept": "application/json"},
            timeout=30.0,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("NexusClient not entered as context manager")
        return self._client

    def _read_rate_limit_headers(self, resp: httpx.Response) -> None:
        h_rem = resp.headers.get("X-RL-Hourly-Remaining")
        d_rem = resp.headers.get("X-RL-Daily-Remaining")
        if h_rem is not None:
            self.hourly_remaining = int(h_rem)
        if d_rem is not None:
            self.daily_remaining = int(d_rem)

    def _check(self, resp: httpx.Response) -> None:
        self._read_rate_limit_headers(resp)
        if resp.status_code == 429:
            raise NexusRateLimitError(
                hourly_remaining=self.hourly_remaining or 0,
                daily_remaining=self.daily_remaining or 0,
                reset=resp.headers.get("X-RL-Hourly-Reset", ""),
            )
        if resp.status_code == 401:
            raise AuthRequiredError("Nexus Mods API key required")
        resp.raise_for_status()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self.client.get(path, params=params)
        self._check(resp)
        return resp.json()

    async def _graphql(self, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self.client.post(GRAPHQL_PATH, json=payload)
        self._check(resp)
        body = resp.json()
        if errors := body.get("errors"):
            raise NexusGraphQLError([e.get("message", "") for e in errors])
        return body.get("data") or {}

    async def validate_key(self) -> NexusKeyResult:
        try:
            data = await self._get("/v1/users/validate.json")
            return NexusKeyResult(
                valid=True,
                username=data.get("name", ""),
                is_premium=data.get("is_premium", False),
            )
        except AuthRequiredError:
            return NexusKeyResult(valid=False, error="HTTP 401")
        except httpx.HTTPStatusError as e:
            return NexusKeyResult(valid=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return NexusKeyResult(valid=False, error=str(e))

    async def get_mod_info(self, game_domain: str, mod_id: int) -> dict[str, Any]:
        return await self._get(f"/v1/games/{game_domain}/mods/{mod_id}.json")

    async def get_mod_files(
        self,
        game_domain: str,
        mod_id: int,
        *,
        category: str | None = None,
    ) -> dict[str, Any]:
        """Return ``{"files": [...], "file_updates": [...]}`` for a mod."""
        params = {"category": category} if category else None
        return await self._get(f"/v1/games/{game_domain}/mods/{mod_id}/files.json", params)

    async def get_download_links(
        self, game_domain: str, mod_id: int, file_id: int
    ) -> list[dict[str, Any]]:
        """Fetch CDN download URLs. Direct links need a premium account."""
        path = f"/v1/games/{game_domain}/mods/{mod_id}/files/{file_id}/download_link.json"
        try:
            return await self._get(path)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 403:
                raise NexusPremiumRequiredError(
                    "Premium account required for direct downloads"
                ) from e
            raise

    async def search_mods(self, request: ModSearchRequest) -> list[dict[str, Any]]:
        data = await self._graphql(request.to_payload())
        return (data.get("mods") or {}).get("nodes") or []

    async def get_mod_requirements(self, request: ModRequirementsRequest) -> list[NexusRequirement]:
        data = await self._graphql(request.to_payload())
        requirements = (data.get("modRequirements") or {}).get("nexusRequirements") or {}
        return [
            NexusRequirement(mod_id=node["modId"], mod_name=node.get("modName", ""))
            for node in requirements.get("nodes") or []
        ]
