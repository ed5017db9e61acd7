"""
Configuration for the sealing engine.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from verumseal import ENGINE_VERSION
from verumseal.qr import DEFAULT_QR_ENDPOINT, DEFAULT_QR_SIZE, DEFAULT_TIMEOUT
from verumseal.security import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_FILES,
    DEFAULT_MAX_NARRATIVE_LENGTH,
    SecurityLimits,
)

QR_PROVIDERS = ("remote", "local", "none")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SealConfig:
    """
    Configuration for sealing.

    Defaults match the hosted deployment: remote QR rendering, strict
    text (a narrative the fonts cannot show aborts the seal), footer zone
    taken from the supplied timestamp.
    """

    engine_version: str = ENGINE_VERSION

    # Verification image collaborator
    qr_provider: str = "remote"
    qr_endpoint: str = DEFAULT_QR_ENDPOINT
    qr_timeout: float = DEFAULT_TIMEOUT
    qr_size: int = DEFAULT_QR_SIZE

    # Rendering
    strict_text: bool = True
    timezone_label: str | None = None

    # Input limits
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_files: int = DEFAULT_MAX_FILES
    max_narrative_length: int = DEFAULT_MAX_NARRATIVE_LENGTH

    # Parallel evidence digesting
    digest_workers: int = 4

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.qr_provider not in QR_PROVIDERS:
            raise ValueError(f"qr_provider must be one of {QR_PROVIDERS}, got {self.qr_provider!r}")

        if self.qr_timeout <= 0:
            raise ValueError(f"qr_timeout must be > 0, got {self.qr_timeout}")

        if self.qr_size < 21:
            raise ValueError(f"qr_size must be >= 21, got {self.qr_size}")

        if self.digest_workers < 1:
            raise ValueError(f"digest_workers must be >= 1, got {self.digest_workers}")

        for name in ("max_file_size", "max_files", "max_narrative_length"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")

    @property
    def limits(self) -> SecurityLimits:
        return SecurityLimits(
            max_file_size=self.max_file_size,
            max_files=self.max_files,
            max_narrative_length=self.max_narrative_length,
        )

    @classmethod
    def from_env(cls) -> SealConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            VERUMSEAL_ENGINE_VERSION: Version tag written to manifests
            VERUMSEAL_QR_PROVIDER: remote/local/none
            VERUMSEAL_QR_ENDPOINT: Remote QR service URL
            VERUMSEAL_QR_TIMEOUT: Remote QR timeout in seconds
            VERUMSEAL_QR_SIZE: Verification code size in pixels
            VERUMSEAL_STRICT_TEXT: Fail on unencodable text (true/false)
            VERUMSEAL_TIMEZONE_LABEL: Zone label printed in footers
            VERUMSEAL_MAX_FILE_SIZE: Max evidence file size in bytes
            VERUMSEAL_MAX_FILES: Max evidence files per seal
            VERUMSEAL_MAX_NARRATIVE_LENGTH: Max narrative length in characters
            VERUMSEAL_DIGEST_WORKERS: Digest worker threads
        """
        return cls(
            engine_version=os.getenv("VERUMSEAL_ENGINE_VERSION", ENGINE_VERSION),
            qr_provider=os.getenv("VERUMSEAL_QR_PROVIDER", "remote").lower(),
            qr_endpoint=os.getenv("VERUMSEAL_QR_ENDPOINT", DEFAULT_QR_ENDPOINT),
            qr_timeout=float(os.getenv("VERUMSEAL_QR_TIMEOUT", str(DEFAULT_TIMEOUT))),
            qr_size=int(os.getenv("VERUMSEAL_QR_SIZE", str(DEFAULT_QR_SIZE))),
            strict_text=_env_bool(os.getenv("VERUMSEAL_STRICT_TEXT", "true")),
            timezone_label=os.getenv("VERUMSEAL_TIMEZONE_LABEL") or None,
            max_file_size=int(os.getenv("VERUMSEAL_MAX_FILE_SIZE", str(DEFAULT_MAX_FILE_SIZE))),
            max_files=int(os.getenv("VERUMSEAL_MAX_FILES", str(DEFAULT_MAX_FILES))),
            max_narrative_length=int(
                os.getenv("VERUMSEAL_MAX_NARRATIVE_LENGTH", str(DEFAULT_MAX_NARRATIVE_LENGTH))
            ),
            digest_workers=int(os.getenv("VERUMSEAL_DIGEST_WORKERS", "4")),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SealConfig:
        """Create configuration from dictionary (e.g., YAML).

        Unknown keys are kept in ``extra``.
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)

    @classmethod
    def from_yaml(cls, path: Path) -> SealConfig:
        """Load configuration from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "engine_version": self.engine_version,
            "qr_provider": self.qr_provider,
            "qr_endpoint": self.qr_endpoint,
            "qr_timeout": self.qr_timeout,
            "qr_size": self.qr_size,
            "strict_text": self.strict_text,
            "timezone_label": self.timezone_label,
            "max_file_size": self.max_file_size,
            "max_files": self.max_files,
            "max_narrative_length": self.max_narrative_length,
            "digest_workers": self.digest_workers,
        }


# Offline configuration: no network collaborator, local code rendering
OFFLINE_CONFIG = SealConfig(qr_provider="local")
