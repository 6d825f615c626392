# oai_harvester/config.py
# Runtime settings, read from environment variables and overridable from the CLI.

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from huggingface_hub import get_token

DEFAULT_USER_AGENT = "IndexJournalsDataScraping/1.0"
DEFAULT_TIMEOUT = 120.0
DEFAULT_MAX_PAGES = 1000
DEFAULT_PAGE_DELAY = 1.0
DEFAULT_BATCH_SIZE = 50


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


@dataclass
class HarvestConfig:
    """HTTP and pagination settings for one harvester process."""

    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = DEFAULT_TIMEOUT  # seconds
    max_redirects: int = 5
    max_pages: int = DEFAULT_MAX_PAGES  # guards against endless token loops
    page_delay: float = DEFAULT_PAGE_DELAY  # seconds between page fetches
    batch_size: int = DEFAULT_BATCH_SIZE
    retry_total: int = 5
    retry_backoff_factor: float = 1.0
    metadata_prefix: str = "oai_dc"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "HarvestConfig":
        env = os.environ if env is None else env
        return cls(
            user_agent=env.get("HARVEST_USER_AGENT") or DEFAULT_USER_AGENT,
            timeout=_env_float(env, "HARVEST_TIMEOUT", DEFAULT_TIMEOUT),
            max_redirects=_env_int(env, "HARVEST_MAX_REDIRECTS", 5),
            max_pages=_env_int(env, "HARVEST_MAX_PAGES", DEFAULT_MAX_PAGES),
            page_delay=_env_float(env, "HARVEST_PAGE_DELAY", DEFAULT_PAGE_DELAY),
            batch_size=_env_int(env, "HARVEST_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            retry_total=_env_int(env, "HARVEST_RETRY_TOTAL", 5),
            retry_backoff_factor=_env_float(env, "HARVEST_RETRY_BACKOFF", 1.0),
        )


@dataclass
class StorageConfig:
    """Where raw XML files go. Without a dataset repo, files stay on local disk."""

    dataset_repo: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    private: bool = False
    local_dir: str = "data"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "StorageConfig":
        env = os.environ if env is None else env
        dataset_repo = env.get("HF_DATASET_REPO") or None
        token = env.get("HF_TOKEN")
        if dataset_repo and not token:
            token = get_token()
        return cls(
            dataset_repo=dataset_repo,
            token=token,
            private=env.get("HF_PRIVATE", "false").lower() == "true",
            local_dir=env.get("HARVEST_DATA_DIR") or "data",
        )
