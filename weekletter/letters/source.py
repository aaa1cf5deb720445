"""
Content sources: where week letters come from.

The login/scraping side of the upstream portal lives outside this package;
anything that can answer fetch(subject_id, period) plugs in here.
"""

from __future__ import annotations

from typing import Protocol

import requests

from weekletter.letters.types import FetchResult, Period
from weekletter.observability.logging import get_logger
from weekletter.observability.telemetry import counter

logger = get_logger(__name__)


class ContentSource(Protocol):
    """Fetch the week letter for a subject and period.

    Return FetchResult.not_published() when the source answered but has no
    letter for the period yet. Raise on network, auth or parse failures.
    """

    def fetch(self, subject_id: str, period: Period) -> FetchResult: ...


class HttpContentSource:
    """
    Reads week letters from an HTTP bridge in front of the school portal.

    The URL template gets subject_id, week and year, e.g.
    ``https://bridge.local/letters/{subject_id}/{year}/{week}``. The bridge
    answers 200 with ``{"published": bool, "content": str}``, or 204/404 when
    nothing is published for the period.
    """

    def __init__(
        self,
        url_template: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.url_template = url_template
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def fetch(self, subject_id: str, period: Period) -> FetchResult:
        url = self.url_template.format(subject_id=subject_id, week=period.week, year=period.year)
        response = self.session.get(url, timeout=self.timeout_seconds)

        if response.status_code in (204, 404):
            counter("source.http.not_published")
            return FetchResult.not_published()

        response.raise_for_status()
        payload = response.json()

        if not payload.get("published", True):
            counter("source.http.not_published")
            return FetchResult.not_published()

        content = payload.get("content")
        if not isinstance(content, str):
            raise ValueError(f"Malformed bridge response for {subject_id}: missing 'content'")

        counter("source.http.published")
        return FetchResult.published(content)
