import asyncio
import time
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from merchant_locator.clients.retry import CircuitBreaker, with_retry
from merchant_locator.collaborators import PlaceSearchProvider
from merchant_locator.errors import LocatorError, ProviderError, ProviderTimeout
from merchant_locator.matchers.candidate_matcher import (
    in_bounds,
    match_category_candidates,
    match_keyword_candidates,
)
from merchant_locator.models import (
    CategoryQuery,
    KeywordTask,
    MatchResult,
    ProviderResponse,
    ProviderStatus,
    SearchSession,
)
from merchant_locator.query_planner import batch_iter, plan_category_queries, plan_keyword_tasks

ProgressCallback = Callable[[int, int], None]


def guarded_call(
    call: Callable[..., Awaitable[ProviderResponse]],
    timeout: Optional[float],
    name: str,
) -> Callable[..., Awaitable[ProviderResponse]]:
    """
    Apply the per-call timeout and turn an ERROR status into an exception.

    Raises:
        ProviderTimeout: If the call did not finish within `timeout` seconds.
        ProviderError: If the provider answered with an ERROR status.
    """

    async def wrapper(*args, **kwargs) -> ProviderResponse:
        try:
            if timeout:
                response = await asyncio.wait_for(call(*args, **kwargs), timeout=timeout)
            else:
                response = await call(*args, **kwargs)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"{name} call exceeded {timeout}s", timeout=timeout) from e
        if response.status == ProviderStatus.ERROR:
            raise ProviderError(f"{name} call returned ERROR status")
        return response

    return wrapper


class SearchOrchestrator:
    """
    Runs the category phase and then the keyword phase of one search session.

    Provider failures are isolated per query: they are logged, counted in
    session.failed_queries and never abort the plan. The session's
    cancellation token is checked before every new provider call; matches
    accepted so far stay in the session.
    """

    def __init__(
        self,
        provider: PlaceSearchProvider,
        session: SearchSession,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.provider = provider
        self.session = session
        self.on_progress = on_progress
        settings = session.settings

        self._category_search = guarded_call(
            provider.category_search, settings.request_timeout, "category_search"
        )
        self._keyword_search = guarded_call(
            provider.keyword_search, settings.request_timeout, "keyword_search"
        )
        if settings.retry_policy is not None:
            self.category_breaker = CircuitBreaker("category_search")
            self.keyword_breaker = CircuitBreaker("keyword_search")
            self._category_search = with_retry(
                self._category_search,
                settings.retry_policy,
                breaker=self.category_breaker,
                cancel_token=session.cancel_token,
            )
            self._keyword_search = with_retry(
                self._keyword_search,
                settings.retry_policy,
                breaker=self.keyword_breaker,
                cancel_token=session.cancel_token,
            )

    def _report_progress(self) -> None:
        if self.on_progress is None:
            return
        done = self.session.completed_queries + self.session.failed_queries
        self.on_progress(done, self.session.total_queries)

    def _record_failure(self, label: str, error: BaseException) -> None:
        self.session.failed_queries += 1
        if isinstance(error, LocatorError):
            logger.warning(f"⚠️ {label} failed: {error}")
        else:
            logger.warning(f"⚠️ {label} failed unexpectedly: {type(error).__name__}: {error}")

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def run_category_query(self, query: CategoryQuery) -> int:
        """
        Run one category query and its pagination chain.

        The next page is fetched only while the provider reports more pages,
        fewer than settings.min_results_per_category candidates were matched
        for this query and settings.max_pages is not reached.

        Returns:
            int: Matches accepted for this query.
        """
        session = self.session
        settings = session.settings
        matched = 0
        page = 1
        try:
            while True:
                if session.cancelled:
                    return matched
                response = await self._category_search(query, page)
                if response.status == ProviderStatus.ZERO_RESULT:
                    logger.debug(f"Category '{query.name}' page {page}: zero results")
                    break
                matched += len(match_category_candidates(session, response.items, query.name))
                if (
                    not response.has_next_page
                    or matched >= settings.min_results_per_category
                    or page >= settings.max_pages
                ):
                    break
                page += 1
                await self._pause(settings.api_delay)
        except Exception as e:
            self._record_failure(f"Category '{query.name}' ({query.code}) page {page}", e)
        else:
            session.completed_queries += 1
        self._report_progress()
        return matched

    async def run_category_phase(self, queries: List[CategoryQuery]) -> None:
        session = self.session
        start = time.perf_counter()
        logger.info(f"🔎 Category search: {len(queries)} queries")
        for i, query in enumerate(queries):
            if i > 0:
                await self._pause(session.settings.api_delay)
            if session.cancelled:
                logger.info(f"🛑 Search cancelled after {i} of {len(queries)} category queries")
                return
            matched = await self.run_category_query(query)
            logger.debug(f"Category '{query.name}': {matched} matched")
        logger.info(
            f"✅ Category search done in {time.perf_counter() - start:.2f}s: "
            f"{len(session.matches)} matched"
        )

    async def run_keyword_task(self, task: KeywordTask) -> Optional[MatchResult]:
        """
        Try the keyword variants of one roster entry in order.

        Stops at the first variant whose results contain any in-bounds
        candidate, whether or not that candidate is accepted. A variant
        whose call fails is logged and the next variant is tried; the task
        counts as failed only when every variant it issued failed.
        """
        session = self.session
        result = None
        issued = 0
        errors = 0
        last_error: Optional[Exception] = None
        for n, query in enumerate(task.queries):
            if n > 0:
                await self._pause(session.settings.keyword_variant_delay)
            if session.cancelled:
                break
            issued += 1
            try:
                response = await self._keyword_search(query)
            except Exception as e:
                errors += 1
                last_error = e
                logger.warning(f"⚠️ Keyword '{query.keyword}' failed: {e}")
                continue
            if response.status != ProviderStatus.OK:
                continue
            candidates = in_bounds(session, response.items)
            if not candidates:
                continue
            result = match_keyword_candidates(session, task.entry, candidates, query.keyword)
            break
        if issued and errors == issued:
            self._record_failure(f"Keyword search for '{task.entry.name}'", last_error)
        elif issued:
            session.completed_queries += 1
        return result

    async def run_keyword_phase(self, radius: Optional[int] = None) -> None:
        session = self.session
        settings = session.settings
        if not settings.keyword_search_enabled or session.cancelled:
            return
        unmatched = session.unmatched_entries()
        if not unmatched:
            return

        tasks = plan_keyword_tasks(unmatched, session.viewport, settings, radius)
        session.total_queries += len(tasks)
        self._report_progress()
        logger.info(f"🔑 Keyword search: {len(tasks)} of {len(unmatched)} unmatched entries")

        before = len(session.matches)
        for i, batch in batch_iter(tasks, settings.keyword_batch_size):
            if i > 0:
                await self._pause(settings.keyword_batch_delay)
            if session.cancelled:
                logger.info(f"🛑 Search cancelled after {i} of {len(tasks)} keyword tasks")
                return
            outcomes = await asyncio.gather(
                *[self.run_keyword_task(task) for task in batch],
                return_exceptions=True,
            )
            for task, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    self._record_failure(f"Keyword search for '{task.entry.name}'", outcome)
            self._report_progress()
        logger.info(f"✅ Keyword search done: {len(session.matches) - before} matched")

    async def run(self) -> List[MatchResult]:
        """
        Execute the whole query plan for the session.

        Returns:
            List[MatchResult]: Matches accepted during the session, in acceptance order.
        """
        session = self.session
        plan = plan_category_queries(session.viewport, session.settings)
        session.total_queries = len(plan.category_queries)
        self._report_progress()

        await self.run_category_phase(plan.category_queries)
        await self.run_keyword_phase(plan.radius_meters)
        return list(session.matches)
