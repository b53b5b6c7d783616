from __future__ import annotations

import calendar
import time
import typing as tp
from email.utils import formatdate, parsedate_tz
from urllib.parse import urlsplit, urlunsplit

HEADERS_ENCODING = "iso-8859-1"


class BaseClock:
    def now(self) -> float:
        raise NotImplementedError()

    def now_ms(self) -> float:
        return self.now() * 1000


class Clock(BaseClock):
    def now(self) -> float:
        return time.time()


def parse_date(date: tp.Optional[str]) -> tp.Optional[int]:
    if not date:
        return None
    parsed = parsedate_tz(date)
    if parsed is None:
        return None
    return calendar.timegm(parsed[:6])


def format_http_date(timestamp: float) -> str:
    """
    Format a unix timestamp as an HTTP date.

    Example output: 'Sun, 26 Oct 2025 12:34:56 GMT'
    """
    return formatdate(timeval=timestamp, localtime=False, usegmt=True)


def get_safe_url(url: str) -> str:
    """Strip the query and credentials from a URL so it can be logged."""
    parts = urlsplit(url)
    netloc = parts.hostname or ""
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))
