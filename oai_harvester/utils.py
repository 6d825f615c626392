# oai_harvester/utils.py
# Shared HTTP session and small time helpers.

import time
from datetime import datetime, timezone
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import HarvestConfig


def get_session(config: Optional[HarvestConfig] = None) -> requests.Session:
    """Return a requests session with retry policy for transient errors.

    The final response of an exhausted retry is returned rather than raised,
    so 4xx and 5xx statuses reach the caller and can be classified alike.
    """
    config = config or HarvestConfig()
    retries = Retry(
        total=config.retry_total,
        backoff_factor=config.retry_backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    session = requests.Session()
    session.max_redirects = config.max_redirects
    session.headers.update({
        "User-Agent": config.user_agent,
        "Accept": "*/*",
    })
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """ISO 8601 UTC timestamp with millisecond precision and a Z suffix."""
    moment = moment or utc_now()
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def delay(seconds: float) -> None:
    """Fixed pause between successive page fetches."""
    if seconds > 0:
        time.sleep(seconds)
