import asyncio
from typing import Dict, List

import pytest

from merchant_locator.locality import LocalityTable
from merchant_locator.models import (
    LatLng,
    ProviderResponse,
    SearchSession,
    SearchSettings,
    Viewport,
)


class FakePlaceProvider:
    """
    Scripted place-search provider.

    category_pages maps a category code to its pages; keyword_results maps a
    keyword to its response. Anything unscripted is a ZERO_RESULT.
    """

    def __init__(self):
        self.category_pages: Dict[str, List[ProviderResponse]] = {}
        self.keyword_results: Dict[str, ProviderResponse] = {}
        self.category_errors: Dict[str, Exception] = {}
        self.keyword_errors: Dict[str, Exception] = {}
        self.slow: Dict[str, float] = {}
        self.category_calls: List[tuple] = []
        self.keyword_calls: List[str] = []

    async def category_search(self, query, page=1):
        self.category_calls.append((query.code, page))
        if query.code in self.slow:
            await asyncio.sleep(self.slow[query.code])
        if query.code in self.category_errors:
            raise self.category_errors[query.code]
        pages = self.category_pages.get(query.code, [])
        if page > len(pages):
            return ProviderResponse.zero_result()
        return pages[page - 1]

    async def keyword_search(self, query):
        self.keyword_calls.append(query.keyword)
        if query.keyword in self.slow:
            await asyncio.sleep(self.slow[query.keyword])
        if query.keyword in self.keyword_errors:
            raise self.keyword_errors[query.keyword]
        return self.keyword_results.get(query.keyword, ProviderResponse.zero_result())

    @property
    def call_count(self) -> int:
        return len(self.category_calls) + len(self.keyword_calls)


@pytest.fixture
def fake_provider():
    return FakePlaceProvider()


@pytest.fixture
def viewport():
    return Viewport(south_west=LatLng(37.60, 126.90), north_east=LatLng(37.70, 127.00))


@pytest.fixture
def fast_settings():
    """Settings without pacing delays or retries."""
    return SearchSettings(
        api_delay=0,
        keyword_batch_delay=0,
        keyword_variant_delay=0,
        request_timeout=1.0,
        retry_policy=None,
    )


@pytest.fixture
def locality_table():
    return LocalityTable()


@pytest.fixture
def make_session(viewport, fast_settings, locality_table):
    def _make(roster, **kwargs):
        kwargs.setdefault("settings", fast_settings)
        kwargs.setdefault("locality_table", locality_table)
        return SearchSession.create(roster, viewport, **kwargs)

    return _make
