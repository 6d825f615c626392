import pytest

import oai_harvester.config as config_module
from oai_harvester.config import HarvestConfig, StorageConfig
from oai_harvester.utils import get_session


def test_defaults():
    config = HarvestConfig.from_env({})
    assert config.max_pages == 1000
    assert config.page_delay == 1.0
    assert config.batch_size == 50
    assert config.timeout == 120.0
    assert config.user_agent == "IndexJournalsDataScraping/1.0"


def test_environment_overrides():
    config = HarvestConfig.from_env({
        "HARVEST_MAX_PAGES": "10",
        "HARVEST_PAGE_DELAY": "0.5",
        "HARVEST_BATCH_SIZE": "25",
        "HARVEST_USER_AGENT": "TestAgent/2.0",
    })
    assert (config.max_pages, config.page_delay, config.batch_size) == (10, 0.5, 25)
    assert config.user_agent == "TestAgent/2.0"


@pytest.mark.parametrize("env", [
    {"HARVEST_MAX_PAGES": "many"},
    {"HARVEST_MAX_PAGES": "0"},
    {"HARVEST_PAGE_DELAY": "-1"},
])
def test_invalid_values(env):
    with pytest.raises(ValueError):
        HarvestConfig.from_env(env)


def test_storage_from_env(monkeypatch):
    monkeypatch.setattr(config_module, "get_token", lambda: "cached-token")

    assert StorageConfig.from_env({}).dataset_repo is None
    storage = StorageConfig.from_env({"HF_DATASET_REPO": "org/raw", "HF_PRIVATE": "TRUE"})
    assert storage.dataset_repo == "org/raw"
    assert storage.token == "cached-token"
    assert storage.private is True
    assert StorageConfig.from_env({"HF_DATASET_REPO": "org/raw", "HF_TOKEN": "hf_env"}).token == "hf_env"


def test_session_uses_config():
    session = get_session(HarvestConfig(user_agent="TestAgent/2.0", max_redirects=3))
    assert session.headers["User-Agent"] == "TestAgent/2.0"
    assert session.max_redirects == 3
    retries = session.get_adapter("https://example.com").max_retries
    assert retries.raise_on_status is False
    assert 503 in retries.status_forcelist
