"""Tests for atomic file replacement."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from lloro.shared.services import durable_write
from lloro.shared.services.durable_write import atomic_write_bytes, atomic_write_json


def test_write_creates_parent_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "storage.json"

    atomic_write_json(target, {"a": 1})
    atomic_write_json(target, {"a": 2})

    assert json.loads(target.read_text(encoding="utf-8")) == {"a": 2}
    assert os.listdir(target.parent) == ["storage.json"]


def test_unserializable_value_leaves_target_untouched(tmp_path: Path) -> None:
    target = tmp_path / "storage.json"
    atomic_write_json(target, {"kept": True})

    with pytest.raises(TypeError):
        atomic_write_json(target, {"bad": object()})

    assert json.loads(target.read_text(encoding="utf-8")) == {"kept": True}
    assert os.listdir(tmp_path) == ["storage.json"]


def test_failed_rename_removes_temp_file(tmp_path: Path, monkeypatch) -> None:
    target = tmp_path / "storage.json"
    target.write_bytes(b"old")

    def refuse(src, dst):
        raise OSError("rename refused")

    monkeypatch.setattr(durable_write.os, "replace", refuse)

    with pytest.raises(OSError, match="rename refused"):
        atomic_write_bytes(target, b"new")

    assert target.read_bytes() == b"old"
    assert os.listdir(tmp_path) == ["storage.json"]
