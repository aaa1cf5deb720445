"""
Subject configuration.

Subjects (one per child) and their notification sinks are read from a YAML
file and validated with pydantic:

    subjects:
      - name: Emma Hansen
        sinks:
          - type: log
          - type: webhook
            url: https://hooks.example.com/emma

The id defaults to the name as a lower-case slug.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from weekletter.config import PROJECT_ROOT, SUBJECTS_FILE
from weekletter.distribution.publisher import Distributor
from weekletter.distribution.sinks import EmailSink, LoggingSink, NotificationSink, WebhookSink
from weekletter.errors import ConfigurationError
from weekletter.observability.logging import get_logger

logger = get_logger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9_]+")


def normalize_subject_id(name: str) -> str:
    """'Emma Hansen' -> 'emma_hansen'."""
    slug = _SLUG_RE.sub("", name.strip().lower().replace(" ", "_"))
    if not slug:
        raise ValueError(f"Cannot derive a subject id from {name!r}")
    return slug


class SinkType(str, Enum):
    LOG = "log"
    WEBHOOK = "webhook"
    EMAIL = "email"


class SinkConfig(BaseModel):
    type: SinkType
    name: str | None = None
    url: str | None = None
    to: str | None = None

    @model_validator(mode="after")
    def _check_target(self) -> SinkConfig:
        if self.type is SinkType.WEBHOOK and not self.url:
            raise ValueError("webhook sinks need a url")
        if self.type is SinkType.EMAIL and not self.to:
            raise ValueError("email sinks need a 'to' address")
        return self


class SubjectConfig(BaseModel):
    id: str = ""
    name: str = Field(min_length=1)
    sinks: list[SinkConfig] = Field(default_factory=lambda: [SinkConfig(type=SinkType.LOG)])

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return normalize_subject_id(value) if value else ""

    @model_validator(mode="after")
    def _default_id(self) -> SubjectConfig:
        if not self.id:
            self.id = normalize_subject_id(self.name)
        return self


def load_subjects(path: Path | str | None = None) -> list[SubjectConfig]:
    """
    Read and validate the subjects file.

    Raises:
        ConfigurationError: Missing file, bad YAML, invalid entries or duplicate ids
    """
    config_path = Path(path or SUBJECTS_FILE)
    if not config_path.is_absolute() and not config_path.exists():
        config_path = PROJECT_ROOT / config_path

    if not config_path.exists():
        raise ConfigurationError(f"Subjects file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    entries = raw.get("subjects") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(f"{config_path} must contain a 'subjects' list")

    try:
        subjects = [SubjectConfig.model_validate(entry) for entry in entries]
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid subject in {config_path}: {e}") from e

    seen: set[str] = set()
    for subject in subjects:
        if subject.id in seen:
            raise ConfigurationError(f"Duplicate subject id {subject.id!r} in {config_path}")
        seen.add(subject.id)

    logger.info("Loaded %d subjects from %s", len(subjects), config_path)
    return subjects


def build_sink(config: SinkConfig) -> NotificationSink:
    name = config.name or config.type.value
    if config.type is SinkType.WEBHOOK:
        return WebhookSink(config.url, name=name)
    if config.type is SinkType.EMAIL:
        return EmailSink(config.to, name=name)
    return LoggingSink(name=name)


def register_subjects(distributor: Distributor, subjects: list[SubjectConfig]) -> None:
    """Register every configured sink with the distributor."""
    for subject in subjects:
        for sink_config in subject.sinks:
            distributor.register(subject.id, build_sink(sink_config))
