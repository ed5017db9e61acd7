"""Tests for sealing configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from verumseal import ENGINE_VERSION
from verumseal.config import OFFLINE_CONFIG, SealConfig
from verumseal.qr import DEFAULT_QR_ENDPOINT


def test_default_config():
    """Test default configuration."""
    config = SealConfig()
    assert config.engine_version == ENGINE_VERSION
    assert config.qr_provider == "remote"
    assert config.qr_endpoint == DEFAULT_QR_ENDPOINT
    assert config.strict_text is True


def test_offline_config():
    assert OFFLINE_CONFIG.qr_provider == "local"


def test_config_validation():
    """Test configuration validation."""
    with pytest.raises(ValueError, match="qr_provider"):
        SealConfig(qr_provider="carrier-pigeon")

    with pytest.raises(ValueError, match="qr_timeout"):
        SealConfig(qr_timeout=0)

    with pytest.raises(ValueError, match="qr_size"):
        SealConfig(qr_size=10)

    with pytest.raises(ValueError, match="digest_workers"):
        SealConfig(digest_workers=0)

    with pytest.raises(ValueError, match="max_files"):
        SealConfig(max_files=0)


def test_limits():
    limits = SealConfig(max_file_size=10, max_files=2, max_narrative_length=3).limits
    assert (limits.max_file_size, limits.max_files, limits.max_narrative_length) == (10, 2, 3)


def test_config_from_env(monkeypatch):
    """Test loading config from environment variables."""
    monkeypatch.setenv("VERUMSEAL_QR_PROVIDER", "LOCAL")
    monkeypatch.setenv("VERUMSEAL_QR_TIMEOUT", "2.5")
    monkeypatch.setenv("VERUMSEAL_STRICT_TEXT", "no")
    monkeypatch.setenv("VERUMSEAL_QR_SIZE", "256")
    monkeypatch.setenv("VERUMSEAL_MAX_NARRATIVE_LENGTH", "5000")
    monkeypatch.setenv("VERUMSEAL_TIMEZONE_LABEL", "SAST")
    monkeypatch.setenv("VERUMSEAL_MAX_FILES", "7")
    monkeypatch.setenv("VERUMSEAL_DIGEST_WORKERS", "2")

    config = SealConfig.from_env()

    assert config.qr_provider == "local"
    assert config.qr_timeout == 2.5
    assert config.qr_size == 256
    assert config.strict_text is False
    assert config.max_narrative_length == 5000
    assert config.timezone_label == "SAST"
    assert config.max_files == 7
    assert config.digest_workers == 2


def test_config_from_dict():
    """Test loading config from dictionary; unknown keys are kept."""
    config = SealConfig.from_dict({"qr_provider": "none", "strict_text": False, "team": "forensics"})
    assert config.qr_provider == "none"
    assert config.strict_text is False
    assert config.extra == {"team": "forensics"}


def test_config_from_yaml(tmp_path: Path):
    path = tmp_path / "seal.yaml"
    path.write_text("qr_provider: local\nmax_files: 3\ntimezone_label: CET\n")
    config = SealConfig.from_yaml(path)
    assert config.qr_provider == "local"
    assert config.max_files == 3
    assert config.timezone_label == "CET"


def test_config_from_yaml_rejects_non_mapping(tmp_path: Path):
    path = tmp_path / "seal.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        SealConfig.from_yaml(path)


def test_config_to_dict_round_trip():
    config = SealConfig(qr_provider="local", strict_text=False, max_files=9)
    assert SealConfig.from_dict(config.to_dict()) == config
