import asyncio
import sys

from loguru import logger

from merchant_locator.clients import KakaoLocalClient
from merchant_locator.collaborators import CsvResultRenderer, InMemoryLocationStore
from merchant_locator.config import (
    INPUT_ROSTER,
    LOG_LEVEL,
    OUTPUT_CSV,
    VIEWPORT_NE_LAT,
    VIEWPORT_NE_LNG,
    VIEWPORT_SW_LAT,
    VIEWPORT_SW_LNG,
)
from merchant_locator.errors import LocatorError
from merchant_locator.locality import load_locality_table
from merchant_locator.matchers.matching_orchestrator import run_search_session
from merchant_locator.models import LatLng, Viewport
from merchant_locator.roster_loader import load_roster


def log_progress(done: int, total: int):
    logger.info(f"Progress: {done}/{total} queries")


async def main():
    """
    Locate every roster merchant inside the configured viewport.

    - Loads the roster spreadsheet.
    - Runs one search session against Kakao Local.
    - Writes located merchants to the output CSV.
    """
    # Initialize logs
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=LOG_LEVEL, format="<green>{time:HH:mm:ss}</green> | <level>{message}</level>")

    table = load_locality_table()
    roster = load_roster(INPUT_ROSTER, table)
    viewport = Viewport(
        south_west=LatLng(VIEWPORT_SW_LAT, VIEWPORT_SW_LNG),
        north_east=LatLng(VIEWPORT_NE_LAT, VIEWPORT_NE_LNG),
    )

    client = KakaoLocalClient()
    try:
        outcome = await run_search_session(
            roster,
            viewport,
            client,
            location_store=InMemoryLocationStore(),
            renderer=CsvResultRenderer(OUTPUT_CSV, roster),
            on_progress=log_progress,
            locality_table=table,
        )
        if not outcome.results:
            logger.warning("No matches found")
    finally:
        # Cleanup: close KakaoLocalClient session to prevent unclosed connector warnings
        await client.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except LocatorError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)
