"""SharePoint calendar adapter — calendar lists over the SharePoint REST API.

Returns raw list and list-item records; mapping them to sources and events is
the core's job. Transport problems are wrapped into CalendarError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from multical.data.models import BackendKind, CalendarSource
from multical.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10
# BaseTemplate of the classic "Calendar" list
_CALENDAR_TEMPLATE = 106

_LIST_FIELDS = "Id,Title,Description,ItemCount,DefaultViewUrl,Hidden"
_ITEM_FIELDS = (
    "ID,Title,Description,EventDate,EndDate,Location,Category,"
    "fAllDayEvent,fRecurrence,RecurrenceData,Duration,Author/Title"
)


def _odata_datetime(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _odata_literal(text: str) -> str:
    return text.replace("'", "''")


class SharePointCalendarAdapter:
    """Calendar lists from one or more SharePoint sites.

    Args:
        site_urls: Absolute site URLs to scan for calendar lists.
        access_token: Bearer token sent with every request.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    kind = BackendKind.LIST

    def __init__(
        self,
        site_urls: list[str],
        access_token: str = "",
        timeout: float = _TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._site_urls = [url.rstrip("/") for url in site_urls]
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json;odata=nometadata"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return httpx.AsyncClient(timeout=self._timeout, headers=headers, transport=self._transport)

    async def _get_json(self, client: httpx.AsyncClient, url: str, params: dict | None = None) -> dict:
        resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()

    async def fetch_sources(self) -> list[dict]:
        records: list[dict] = []
        errors: list[str] = []
        async with self._client() as client:
            for site in self._site_urls:
                try:
                    data = await self._get_json(
                        client,
                        f"{site}/_api/web/lists",
                        {
                            "$filter": f"BaseTemplate eq {_CALENDAR_TEMPLATE} and Hidden eq false",
                            "$select": _LIST_FIELDS,
                        },
                    )
                except (httpx.HTTPError, ValueError) as exc:
                    logger.error("SharePoint API error (lists on %s): %s", site, exc)
                    errors.append(f"{site}: {exc}")
                    continue
                for item in data.get("value", []):
                    records.append({**item, "SiteUrl": site})

        if errors and not records:
            raise CalendarError(f"Failed to load SharePoint calendars: {'; '.join(errors)}")
        logger.info("Found %d SharePoint calendar list(s) on %d site(s)", len(records), len(self._site_urls))
        return records

    async def fetch_events(
        self,
        source: CalendarSource,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        max_events: int = 100,
    ) -> list[dict]:
        params = {
            "$select": _ITEM_FIELDS,
            "$expand": "Author",
            "$orderby": "EventDate asc",
            "$top": str(max_events),
        }
        if window_start is not None and window_end is not None:
            # Recurring items carry the series end in EndDate, so they are always fetched
            params["$filter"] = (
                f"(EventDate le datetime'{_odata_datetime(window_end)}' and "
                f"EndDate ge datetime'{_odata_datetime(window_start)}') or fRecurrence eq 1"
            )

        url = f"{source.site_url}/_api/web/lists(guid'{source.native_id}')/items"
        try:
            async with self._client() as client:
                data = await self._get_json(client, url, params)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("SharePoint API error (items of %r): %s", source.title, exc)
            raise CalendarError(f"Failed to load events from {source.title}: {exc}") from exc

        items = data.get("value", [])
        logger.info("Fetched %d item(s) from SharePoint list %r", len(items), source.title)
        return items

    async def search_events(
        self, sources: list[CalendarSource], query: str, max_results: int
    ) -> dict[str, list[dict]]:
        params = {
            "$select": _ITEM_FIELDS,
            "$expand": "Author",
            "$filter": f"substringof('{_odata_literal(query)}',Title)",
            "$top": str(max_results),
        }
        results: dict[str, list[dict]] = {}
        errors: list[str] = []
        async with self._client() as client:
            for source in sources:
                url = f"{source.site_url}/_api/web/lists(guid'{source.native_id}')/items"
                try:
                    data = await self._get_json(client, url, params)
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("SharePoint search failed on %r: %s", source.title, exc)
                    errors.append(str(exc))
                    continue
                results[source.id] = data.get("value", [])

        if errors and not results:
            raise CalendarError(f"SharePoint search failed: {errors[0]}")
        return results

    async def fetch_health(self) -> bool:
        if not self._site_urls:
            return False
        try:
            async with self._client() as client:
                resp = await client.get(f"{self._site_urls[0]}/_api/web", params={"$select": "Title"})
        except httpx.HTTPError as exc:
            logger.warning("SharePoint health probe failed: %s", exc)
            return False
        return resp.status_code == 200
