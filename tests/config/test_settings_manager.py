import json
from pathlib import Path
import pytest
from unittest.mock import MagicMock

# The module under test
from connect_chat.config.settings_manager import (
    load_config_data,
    set_settings,
    get_setting,
    load_profiles,
    get_profile,
)


# Mock the ConfigPaths dependency
@pytest.fixture
def mock_config_paths(tmp_path: Path, monkeypatch):
    """Fixture to point ConfigPaths at temporary files."""
    mock_config_paths = MagicMock()
    mock_config_paths.get_config_file.return_value = tmp_path / "config.json"
    mock_config_paths.get_profiles_file.return_value = tmp_path / "profiles.yaml"

    monkeypatch.setattr(
        "connect_chat.config.settings_manager.ConfigPaths", mock_config_paths
    )

    return tmp_path


@pytest.fixture
def mock_config_file(mock_config_paths: Path):
    return mock_config_paths / "config.json"


@pytest.fixture
def mock_profiles_file(mock_config_paths: Path):
    return mock_config_paths / "profiles.yaml"


def test_load_config_data_missing_file(mock_config_file: Path):
    """Test loading data when the config file does not exist."""
    assert not mock_config_file.exists()
    assert load_config_data() == {}


def test_load_config_data_empty_file(mock_config_file: Path):
    """Test loading data from an empty config file."""
    mock_config_file.write_text("")
    assert load_config_data() == {}


def test_load_config_data_corrupt_json(mock_config_file: Path):
    """Test loading data from a file with invalid JSON."""
    mock_config_file.write_text("this is not json")
    assert load_config_data() == {}


def test_load_config_data_not_an_object(mock_config_file: Path):
    mock_config_file.write_text("[1, 2, 3]")
    assert load_config_data() == {}


def test_set_settings_new_file(mock_config_file: Path):
    """Test setting a new configuration when the file doesn't exist."""
    updates = {"region": "eu-west-2", "display_name": "Jane"}
    set_settings(updates)

    assert mock_config_file.exists()
    content = json.loads(mock_config_file.read_text())
    assert content == updates


def test_set_settings_existing_file_merge(mock_config_file: Path):
    """Test setting new configuration and merging with existing data."""
    mock_config_file.write_text(json.dumps({"region": "us-east-1", "max_retries": 3}))

    set_settings({"region": "ap-southeast-2"})

    content = json.loads(mock_config_file.read_text())
    assert content == {"region": "ap-southeast-2", "max_retries": 3}


def test_get_setting(mock_config_file: Path):
    mock_config_file.write_text(json.dumps({"region": "eu-central-1"}))
    assert get_setting("region") == "eu-central-1"
    assert get_setting("missing", "fallback") == "fallback"


def test_load_profiles(mock_profiles_file: Path):
    mock_profiles_file.write_text(
        "profiles:\n"
        "  support:\n"
        "    region: eu-west-2\n"
        "    backend_url: https://example.com/start\n"
        "  broken: just-a-string\n"
    )
    profiles = load_profiles()
    assert list(profiles) == ["support"]
    assert profiles["support"]["region"] == "eu-west-2"


def test_load_profiles_invalid_yaml(mock_profiles_file: Path):
    mock_profiles_file.write_text("profiles: [unclosed")
    assert load_profiles() == {}


def test_get_profile(mock_profiles_file: Path):
    mock_profiles_file.write_text("profiles:\n  sales:\n    display_name: Sam\n")
    assert get_profile("sales") == {"display_name": "Sam"}
    assert get_profile(None) == {}
    with pytest.raises(KeyError):
        get_profile("unknown")
