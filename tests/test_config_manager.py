import pytest
from pydantic import ValidationError

from frontcache.exceptions import ConfigurationError
from frontcache.models.config import CacheConfig
from frontcache.storage.config_manager import ConfigManager
from tests.conftest import TEST_KEY


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "config.ini"


def test_missing_file_yields_defaults(config_file, tmp_path):
    config = ConfigManager(config_file).load_config(environ={})

    assert config.base_url == "http://localhost:3001"
    assert config.validation_mode == "hash"
    assert config.storage_prefix == "api-cache:"
    assert config.max_cache_age == 90 * 24 * 60 * 60 * 1000
    assert config.data_dir == str(tmp_path / "data")
    assert not config_file.exists()


def test_saved_config_loads_back(config_file):
    manager = ConfigManager(config_file)
    manager.save_new_config(
        {
            "base_url": "https://frontend.example.test",
            "validation_mode": "time",
            "page_ttl": None,
            "preload_pages": ["dashboard", "profile"],
        }
    )

    text = config_file.read_text()
    assert "page_ttl = none" in text
    assert "encryption_key" not in text

    config = ConfigManager(config_file).load_config(environ={})
    assert config.base_url == "https://frontend.example.test"
    assert config.validation_mode == "time"
    assert config.page_ttl is None
    assert config.asset_ttl == 12 * 60 * 60 * 1000
    assert config.preload_pages == ["dashboard", "profile"]


def test_missing_keys_are_added_to_existing_file(config_file):
    config_file.write_text("[DEFAULT]\nbase_url = https://frontend.example.test\n")

    config = ConfigManager(config_file).load_config(environ={})

    assert config.base_url == "https://frontend.example.test"
    text = config_file.read_text()
    assert "manifest_ttl = 300000" in text
    assert "allowed_domains = fonts.googleapis.com," in text


def test_environment_overrides_file_and_cli_overrides_environment(config_file):
    config_file.write_text("[DEFAULT]\nbase_url = https://file.example.test\n")
    environ = {
        "API_BASE_URL": "https://env.example.test/",
        "ENCRYPTION_KEY": TEST_KEY,
        "FRONTCACHE_DATA_DIR": "/var/lib/frontcache",
    }

    config = ConfigManager(config_file).load_config(environ=environ)
    assert config.base_url == "https://env.example.test"
    assert config.encryption_key == TEST_KEY
    assert config.data_dir == "/var/lib/frontcache"

    config = ConfigManager(config_file).load_config(
        {"base_url": "https://cli.example.test"}, environ=environ
    )
    assert config.base_url == "https://cli.example.test"


@pytest.mark.parametrize(
    "line",
    [
        "validation_mode = sometimes",
        "max_attempts = lots",
        "max_attempts = 0",
        "base_url = ftp://frontend.example.test",
        "files_endpoint = files",
        "page_ttl = -5",
    ],
)
def test_invalid_values_raise_configuration_error(config_file, line):
    config_file.write_text(f"[DEFAULT]\n{line}\n")
    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).load_config(environ={})


def test_short_encryption_key_is_rejected(config_file):
    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).load_config(environ={"ENCRYPTION_KEY": "short"})


def test_backoff_settings_must_be_consistent():
    with pytest.raises(ValidationError):
        CacheConfig(base_delay=5.0, max_delay=1.0)


def test_base_host_and_ini_keys():
    config = CacheConfig(base_url="https://frontend.example.test:8443/")
    assert config.base_url == "https://frontend.example.test:8443"
    assert config.base_host == "frontend.example.test"
    assert "data_dir" not in CacheConfig.get_ini_keys()
    assert "base_url" in CacheConfig.get_ini_keys()
