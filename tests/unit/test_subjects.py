"""
Tests for loading subjects and their sinks from YAML.
"""

from __future__ import annotations

import pytest

from weekletter.distribution.publisher import Distributor
from weekletter.distribution.sinks import LoggingSink, WebhookSink
from weekletter.errors import ConfigurationError
from weekletter.subjects import SinkType, load_subjects, normalize_subject_id, register_subjects


def write(tmp_path, text: str):
    path = tmp_path / "subjects.yaml"
    path.write_text(text)
    return path


def test_normalize_subject_id():
    assert normalize_subject_id("Emma Hansen") == "emma_hansen"
    assert normalize_subject_id("  Oliver ") == "oliver"
    with pytest.raises(ValueError):
        normalize_subject_id("!!!")


def test_load_subjects(tmp_path):
    path = write(
        tmp_path,
        """
subjects:
  - name: Emma Hansen
    sinks:
      - type: log
      - type: webhook
        name: family-chat
        url: https://hooks.example.com/emma
  - name: Oliver
    id: Oliver
""",
    )

    emma, oliver = load_subjects(path)

    assert emma.id == "emma_hansen"
    assert [s.type for s in emma.sinks] == [SinkType.LOG, SinkType.WEBHOOK]
    assert oliver.id == "oliver"
    assert [s.type for s in oliver.sinks] == [SinkType.LOG]


def test_register_subjects_builds_sinks(tmp_path):
    path = write(
        tmp_path,
        """
subjects:
  - name: Emma
    sinks:
      - type: log
      - type: webhook
        url: https://hooks.example.com/emma
""",
    )
    distributor = Distributor()

    register_subjects(distributor, load_subjects(path))

    sinks = distributor.sinks_for("emma")
    assert [type(s) for s in sinks] == [LoggingSink, WebhookSink]
    assert [s.name for s in sinks] == ["log", "webhook"]


@pytest.mark.parametrize(
    "text",
    [
        "subjects: [",
        "children: []",
        "subjects:\n  - name: Emma\n    sinks:\n      - type: webhook\n",
        "subjects:\n  - name: Emma\n    sinks:\n      - type: pigeon\n",
        "subjects:\n  - name: Emma\n  - name: emma\n",
    ],
    ids=["bad-yaml", "no-subjects-key", "webhook-without-url", "unknown-sink", "duplicate-id"],
)
def test_invalid_files_raise_configuration_error(tmp_path, text):
    with pytest.raises(ConfigurationError):
        load_subjects(write(tmp_path, text))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_subjects(tmp_path / "nope.yaml")
