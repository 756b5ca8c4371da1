"""Tests for dicomsync.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from dicomsync.core.config import (
    DEFAULT_BASE_URL,
    DEFAULT_EXPORT_WORKERS,
    DEFAULT_POLL_INTERVAL_MS,
    Config,
    Profile,
)
from dicomsync.core.exceptions import ConfigurationError, ProfileNotFoundError


def _profile(**overrides) -> Profile:
    values = {
        "project_id": "my-project",
        "location_id": "us-central1",
        "dataset_name": "imaging",
        "store_name": "incoming",
    }
    values.update(overrides)
    return Profile(**values)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "DICOMSYNC_PROFILE",
        "DICOMSYNC_PROJECT",
        "DICOMSYNC_LOCATION",
        "DICOMSYNC_DATASET",
        "DICOMSYNC_STORE",
        "DICOMSYNC_CLIENT_SECRETS",
    ):
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Profile Tests
# =============================================================================


class TestProfile:
    """Tests for Profile dataclass."""

    def test_default_values(self):
        profile = Profile()
        assert profile.poll_interval_ms == DEFAULT_POLL_INTERVAL_MS == 20_000
        assert profile.poll_interval == 20.0
        assert profile.max_export_workers == DEFAULT_EXPORT_WORKERS == 5
        assert profile.max_import_workers == 5
        assert profile.include_content_disposition is False
        assert profile.base_url == DEFAULT_BASE_URL

    def test_store_descriptor(self):
        store = _profile().store_descriptor()
        assert str(store) == (
            "projects/my-project/locations/us-central1/datasets/imaging/dicomStores/incoming"
        )

    def test_missing_identifier(self):
        with pytest.raises(ConfigurationError) as excinfo:
            _profile(dataset_name="").store_descriptor()
        assert excinfo.value.field == "dataset_name"

    def test_invalid_identifier(self):
        with pytest.raises(ConfigurationError) as excinfo:
            _profile(store_name="bad/name").store_descriptor()
        assert excinfo.value.field == "store_name"

    def test_validate_worker_counts(self):
        with pytest.raises(ConfigurationError):
            _profile(max_export_workers=0).validate()
        with pytest.raises(ConfigurationError):
            _profile(poll_interval_ms=0).validate()

    def test_validate_import_directory(self, temp_dir: Path):
        with pytest.raises(ConfigurationError):
            _profile().validate(require_import_directory=True)
        with pytest.raises(ConfigurationError):
            _profile(import_directory=str(temp_dir / "missing")).validate(
                require_import_directory=True
            )
        _profile(import_directory=str(temp_dir)).validate(require_import_directory=True)

    def test_dict_round_trip(self):
        profile = _profile(import_directory="/data/in", max_import_workers=2)
        assert Profile.from_dict(profile.to_dict()) == profile


# =============================================================================
# Config Tests
# =============================================================================


class TestConfig:
    """Tests for Config loading and saving."""

    def test_load_missing_file(self, temp_dir: Path):
        config = Config.load(temp_dir / "missing.yaml")
        assert config.profiles == {}
        assert config.default_profile == "default"

    def test_load_yaml(self, temp_dir: Path, sample_config_yaml: str):
        path = temp_dir / "config.yaml"
        path.write_text(sample_config_yaml)

        config = Config.load(path)

        assert config.default_profile == "research"
        research = config.get_profile()
        assert research.poll_interval_ms == 5000
        assert research.max_export_workers == 3
        assert research.import_directory == "/data/incoming"
        assert config.get_profile("clinical").location_id == "europe-west4"

    def test_invalid_yaml(self, temp_dir: Path):
        path = temp_dir / "config.yaml"
        path.write_text("profiles: [unclosed")
        with pytest.raises(ConfigurationError):
            Config.load(path)

    def test_save_and_reload(self, temp_dir: Path):
        path = temp_dir / "nested" / "config.yaml"
        config = Config(default_profile="main")
        config.add_profile("main", _profile(include_content_disposition=True))
        config.save(path)

        loaded = Config.load(path)
        assert loaded.default_profile == "main"
        assert loaded.get_profile("main").include_content_disposition is True

    def test_env_overrides_active_profile(self, temp_dir, sample_config_yaml, monkeypatch):
        path = temp_dir / "config.yaml"
        path.write_text(sample_config_yaml)
        monkeypatch.setenv("DICOMSYNC_PROFILE", "clinical")
        monkeypatch.setenv("DICOMSYNC_STORE", "override")

        config = Config.load(path)

        assert config.default_profile == "clinical"
        assert config.get_profile().store_name == "override"
        assert config.get_profile("research").store_name == "incoming"

    def test_env_creates_profile_without_file(self, temp_dir, monkeypatch):
        monkeypatch.setenv("DICOMSYNC_PROJECT", "p")
        monkeypatch.setenv("DICOMSYNC_LOCATION", "l")
        monkeypatch.setenv("DICOMSYNC_DATASET", "d")
        monkeypatch.setenv("DICOMSYNC_STORE", "s")

        store = Config.load(temp_dir / "missing.yaml").get_profile().store_descriptor()
        assert store.store_path == "projects/p/locations/l/datasets/d/dicomStores/s"

    def test_profile_not_found(self):
        with pytest.raises(ProfileNotFoundError):
            Config().get_profile("nope")

    def test_set_default_profile(self):
        config = Config()
        config.add_profile("a", _profile())
        config.set_default_profile("a")
        assert config.default_profile == "a"
        with pytest.raises(ProfileNotFoundError):
            config.set_default_profile("b")

    def test_remove_profile(self):
        config = Config()
        config.add_profile("a", _profile())
        assert config.remove_profile("a") is True
        assert config.remove_profile("a") is False
