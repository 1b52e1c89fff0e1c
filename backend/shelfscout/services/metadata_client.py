"""
OMDb metadata client.
- Async httpx client, one request per call, no retries.
- Every call returns a tagged Result; nothing raises for expected failures.
- No in-module caching; results are cached by the caller.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from shelfscout.core.config import settings
from shelfscout.services.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "request limit reached"
_YEAR_RE = re.compile(r"(\d{4})")


class MetadataTitle(BaseModel):
    imdb_id: str
    title: str
    year: Optional[int] = None
    poster_url: Optional[str] = None


class SearchResults(BaseModel):
    titles: List[MetadataTitle] = Field(default_factory=list)


class MetadataClient(Protocol):
    async def search_by_text(self, query: str) -> Result[SearchResults]:
        ...

    async def get_details(self, imdb_id: str) -> Result[Dict[str, Any]]:
        ...


def parse_year(raw: Optional[str]) -> Optional[int]:
    """OMDb years look like "1999", "2010–2015" or "N/A"."""
    if not raw:
        return None
    match = _YEAR_RE.search(str(raw))
    return int(match.group(1)) if match else None


def clean_poster(raw: Optional[str]) -> Optional[str]:
    if not raw or raw == "N/A":
        return None
    return raw


def _is_rate_limit(message: str) -> bool:
    return RATE_LIMIT_MESSAGE in (message or "").lower()


class OmdbMetadataClient:
    """Searches and fetches movie metadata from the OMDb API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OMDB_API_KEY
        self.base_url = base_url or settings.OMDB_BASE_URL
        self.timeout = timeout if timeout is not None else settings.METADATA_TIMEOUT_SECONDS
        self._transport = transport
        self.request_count = 0

    async def _get(self, params: Dict[str, str]) -> Result[Dict[str, Any]]:
        if not self.api_key:
            logger.warning("[OMDb] API key not configured")
            return Err(ErrorKind.NOT_CONFIGURED, "OMDB_API_KEY is not set")

        query = {"apikey": self.api_key, **params}
        self.request_count += 1
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.base_url, params=query)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text if e.response is not None else ""
            if _is_rate_limit(body):
                return Err(ErrorKind.RATE_LIMITED, body)
            return Err(ErrorKind.HTTP, f"OMDb API error: {e.response.status_code} - {body[:200]}")
        except httpx.TransportError as e:
            return Err(ErrorKind.NETWORK, f"Network error: {e}")
        except ValueError as e:
            return Err(ErrorKind.INVALID_RESPONSE, f"Invalid JSON from OMDb: {e}")

        if not isinstance(data, dict):
            return Err(ErrorKind.INVALID_RESPONSE, "Unexpected OMDb payload")
        return Ok(data)

    async def search_by_text(self, query: str) -> Result[SearchResults]:
        result = await self._get({"s": query, "page": "1"})
        if isinstance(result, Err):
            logger.warning("[OMDb] Search failed for %r: %s (%s)", query, result.kind.value, result.message)
            return result

        data = result.value
        if data.get("Response") == "False":
            error = data.get("Error") or ""
            if _is_rate_limit(error):
                logger.warning("[OMDb] Rate limit reached while searching %r", query)
                return Err(ErrorKind.RATE_LIMITED, error)
            # "Movie not found!" and friends are an empty result, not a failure
            logger.info("[OMDb] No results for %r: %s", query, error)
            return Ok(SearchResults())

        titles: List[MetadataTitle] = []
        for raw in data.get("Search") or []:
            imdb_id = raw.get("imdbID")
            title = raw.get("Title")
            if not imdb_id or not title:
                continue
            titles.append(
                MetadataTitle(
                    imdb_id=imdb_id,
                    title=title,
                    year=parse_year(raw.get("Year")),
                    poster_url=clean_poster(raw.get("Poster")),
                )
            )
        logger.debug("[OMDb] Search %r returned %d titles", query, len(titles))
        return Ok(SearchResults(titles=titles))

    async def get_details(self, imdb_id: str) -> Result[Dict[str, Any]]:
        result = await self._get({"i": imdb_id, "plot": "full"})
        if isinstance(result, Err):
            logger.warning("[OMDb] Details failed for %s: %s (%s)", imdb_id, result.kind.value, result.message)
            return result

        data = result.value
        if data.get("Response") == "False":
            error = data.get("Error") or "Movie details not found"
            if _is_rate_limit(error):
                return Err(ErrorKind.RATE_LIMITED, error)
            return Err(ErrorKind.INVALID_RESPONSE, error)
        return Ok(data)
