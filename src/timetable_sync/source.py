"""Google Sheets document source.

Downloads the sheet through its gviz CSV export (works for any sheet shared
"anyone with the link can view") and turns it into a ScheduleGrid. The HTTP
call is blocking, so fetch() runs it on a worker thread.
"""

import asyncio
import io
import re

import pandas as pd
import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.timetable_sync.errors import (
    DocumentUnreachableError,
    InvalidDocumentError,
    TransientError,
)
from src.timetable_sync.logging import get_logger
from src.timetable_sync.models import ScheduleGrid

log = get_logger(__name__)

_SHEET_BASE = re.compile(r"^(https?://docs\.google\.com/spreadsheets/d/[^/?#]+)")


def export_url(link: str) -> str:
    """CSV export URL for a sheet link (edit/view/share variants accepted)."""
    link = link.strip()
    match = _SHEET_BASE.match(link)
    base = match.group(1) if match else link.rstrip("/")
    return f"{base}/gviz/tq?tqx=out:csv"


def parse_csv(text: str) -> ScheduleGrid:
    """Parse CSV text into a grid. The first line becomes the header.

    Raises:
        InvalidDocumentError: If the text is not a readable table.
    """
    try:
        frame = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise InvalidDocumentError(f"Unreadable CSV: {e}") from e

    header = [str(column) for column in frame.columns]
    rows = frame.fillna("").values.tolist()
    log.debug("grid_parsed", columns=len(header), rows=len(rows))
    return ScheduleGrid(header=header, rows=rows)


class GoogleSheetSource:
    """Fetches timetable grids from Google Sheets links."""

    def __init__(self, timeout_seconds: int = 30) -> None:
        self.timeout_seconds = timeout_seconds

    async def fetch(self, link: str) -> ScheduleGrid:
        """Download and parse the sheet behind ``link``.

        Raises:
            DocumentUnreachableError: Network failure or 5xx/429, after retries.
            InvalidDocumentError: The link does not serve a CSV table.
        """
        text = await asyncio.to_thread(self._download, link)
        return parse_csv(text)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2, max=30),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    )
    def _download(self, link: str) -> str:
        url = export_url(link)
        try:
            resp = requests.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            log.warning("document_fetch_failed", url=url, error=str(e))
            raise DocumentUnreachableError(f"GET {url} failed: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            log.warning("document_fetch_failed", url=url, status=resp.status_code)
            raise DocumentUnreachableError(f"GET {url}: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise InvalidDocumentError(f"GET {url}: HTTP {resp.status_code}")

        # A private sheet answers with the Google sign-in page
        content_type = resp.headers.get("Content-Type", "")
        if "text/html" in content_type:
            raise InvalidDocumentError(f"{url} returned HTML, is the sheet shared?")

        resp.encoding = "utf-8"
        log.info("document_fetched", url=url, size=len(resp.text))
        return resp.text
