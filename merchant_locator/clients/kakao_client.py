"""
Singleton Kakao Local search client with rate limiting using aiolimiter.
"""
import asyncio
from typing import Any, Dict, List, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout
from aiolimiter import AsyncLimiter
from loguru import logger

from merchant_locator.config import (
    CONCURRENCY,
    KAKAO_CATEGORY_URL,
    KAKAO_KEYWORD_URL,
    KAKAO_REST_API_KEY,
    REQUEST_TIMEOUT,
)
from merchant_locator.errors import ProviderError, ProviderTimeout
from merchant_locator.models import (
    Candidate,
    CategoryQuery,
    KeywordQuery,
    ProviderResponse,
    ProviderStatus,
)

RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}


def parse_document(doc: Dict[str, Any]) -> Optional[Candidate]:
    """Convert one Kakao `documents` entry to a Candidate; None if it has no usable coordinates."""
    try:
        lat = float(doc["y"])
        lng = float(doc["x"])
    except (KeyError, TypeError, ValueError):
        logger.debug(f"Skipping place without coordinates: {doc.get('place_name')}")
        return None
    return Candidate(
        name=doc.get("place_name") or "",
        lat=lat,
        lng=lng,
        road_address=doc.get("road_address_name") or "",
        old_address=doc.get("address_name") or "",
        category_path=doc.get("category_name") or "",
        provider_id=str(doc["id"]) if doc.get("id") else None,
    )


def parse_response(data: Dict[str, Any]) -> ProviderResponse:
    """
    Map a Kakao Local response body onto the provider response contract.

    Empty `documents` is a ZERO_RESULT, `meta.is_end == False` means more pages exist.
    """
    documents = data.get("documents") or []
    items: List[Candidate] = [c for c in (parse_document(d) for d in documents) if c is not None]
    if not documents:
        return ProviderResponse.zero_result()
    meta = data.get("meta") or {}
    return ProviderResponse(
        status=ProviderStatus.OK,
        items=items,
        has_next_page=not meta.get("is_end", True),
    )


class KakaoLocalClient:
    """
    Singleton Kakao Local client for category and keyword place searches.
    Uses AsyncRateLimiter for rate limiting instead of semaphores.
    """
    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not KakaoLocalClient._initialized:
            if not KAKAO_REST_API_KEY:
                raise ValueError("KAKAO_REST_API_KEY must be set in environment or config")
            self.api_key = KAKAO_REST_API_KEY
            # Rate limiter: allow CONCURRENCY requests per second
            self.rate_limiter = AsyncLimiter(max_rate=CONCURRENCY, time_period=1.0)
            self._session: Optional[ClientSession] = None
            KakaoLocalClient._initialized = True

    async def _get_session(self) -> ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=REQUEST_TIMEOUT))
        return self._session

    async def get_request(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send an authenticated GET request and return the parsed JSON body.

        Args:
            url: Kakao Local endpoint.
            params: Query string parameters.

        Returns:
            Parsed JSON response as a dictionary.

        Raises:
            ProviderTimeout: If the request timed out.
            ProviderError: On transport errors or non-200 responses.
        """
        async with self.rate_limiter:
            session = await self._get_session()
            headers = {"Authorization": f"KakaoAK {self.api_key}"}
            try:
                async with session.get(url, params=params, headers=headers) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderError(
                            f"Kakao API error {resp.status}: {body[:200]}",
                            status=resp.status,
                            retryable=resp.status in RETRYABLE_HTTP_STATUSES,
                        )
                    return await resp.json()
            except asyncio.TimeoutError as e:
                logger.debug(f"⏱️ Kakao request timed out: {url} {params}")
                raise ProviderTimeout(f"Kakao request timed out: {url}", timeout=REQUEST_TIMEOUT) from e
            except ClientError as e:
                logger.debug(f"⚠️ Kakao request failed: {e}")
                raise ProviderError(f"Kakao request failed: {e}", retryable=True) from e

    async def category_search(self, query: CategoryQuery, page: int = 1) -> ProviderResponse:
        params = {
            "category_group_code": query.code,
            "x": query.center.lng,
            "y": query.center.lat,
            "radius": query.radius_meters,
            "size": query.page_size,
            "page": page,
        }
        return parse_response(await self.get_request(KAKAO_CATEGORY_URL, params))

    async def keyword_search(self, query: KeywordQuery) -> ProviderResponse:
        params = {
            "query": query.keyword,
            "x": query.center.lng,
            "y": query.center.lat,
            "radius": query.radius_meters,
            "size": query.page_size,
        }
        return parse_response(await self.get_request(KAKAO_KEYWORD_URL, params))

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
