"""
National holiday sync.

Fetches the national holiday calendar for the current and next year and
replaces the national rows in one transaction. Local holidays added by an
operator are kept and win over a national entry on the same date.

The API returns a JSON list of `{"date": "YYYY-MM-DD", "name": "..."}`
objects for `?year=YYYY`.
"""

import asyncio
from datetime import date, datetime

import httpx

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.jobs.daily_schedule import run_daily_at
from reminder_dispatcher.models.domain.recipient_domain import Holiday
from reminder_dispatcher.repositories.recipient_repository import RecipientRepository

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15  # seconds


class HolidaySyncError(Exception):
    """Holiday API unreachable or returned unusable data."""


class HolidaySyncJob:
    def __init__(
        self,
        repository: RecipientRepository,
        api_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.repository = repository
        self.api_url = api_url or settings.HOLIDAY_API_URL
        self._client = client

    async def fetch_year(self, client: httpx.AsyncClient, year: int) -> list[Holiday]:
        try:
            response = await client.get(self.api_url, params={"year": year})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HolidaySyncError(f"Holiday API request for {year} failed: {e}") from e

        if not isinstance(payload, list):
            raise HolidaySyncError(f"Unexpected holiday API response for {year}")

        holidays = []
        for entry in payload:
            try:
                holidays.append(
                    Holiday(
                        holiday_date=date.fromisoformat(str(entry["date"])[:10]),
                        name=entry["name"],
                        is_national=True,
                        created_by="sync",
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed holiday entry", year=year, error=str(e))

        logger.info("Holidays fetched", year=year, count=len(holidays))
        return holidays

    async def run_once(self, today: date | None = None) -> int:
        """
        Sync this year and next. Never raises.

        Returns:
            int: number of national holidays stored, 0 on failure
        """
        year = (today or datetime.now().date()).year
        try:
            if self._client is not None:
                holidays = await self._fetch_years(self._client, year)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    holidays = await self._fetch_years(client, year)

            if not holidays:
                raise HolidaySyncError("Holiday API returned no holidays")

            return await self.repository.replace_national_holidays(holidays)

        except Exception as e:
            logger.error(
                "Holiday sync failed", error=str(e), error_type=type(e).__name__
            )
            return 0

    async def _fetch_years(self, client: httpx.AsyncClient, year: int) -> list[Holiday]:
        holidays = []
        for target in (year, year + 1):
            holidays.extend(await self.fetch_year(client, target))
        return holidays


async def start_holiday_sync_scheduler(job: HolidaySyncJob) -> None:
    """Initial sync shortly after startup, then daily at HOLIDAY_SYNC_HOUR."""
    if not settings.HOLIDAY_SYNC_ENABLED:
        logger.info("Holiday sync scheduler DISABLED")
        return

    await asyncio.sleep(settings.HOLIDAY_SYNC_STARTUP_DELAY_SECONDS)
    synced = await job.run_once()
    logger.info("Initial holiday sync completed", synced=synced)

    await run_daily_at("holiday_sync", settings.HOLIDAY_SYNC_HOUR, 0, job.run_once)
