from __future__ import annotations

import json
from pathlib import Path

from qr_attendance.config.user_settings_store import DEFAULT_SETTINGS, UserSettingsStore


def test_defaults_when_no_file(tmp_path: Path) -> None:
    store = UserSettingsStore(pointer_dir=tmp_path)

    assert store.get("token_ttl_seconds") == DEFAULT_SETTINGS["token_ttl_seconds"]
    assert store.get("missing_location_policy") == "allow"
    assert store.get("location_endpoint", "fallback") == "fallback"
    assert store.app_data_dir == tmp_path


def test_update_persists_and_reloads(tmp_path: Path) -> None:
    store = UserSettingsStore(pointer_dir=tmp_path)
    store.update(token_ttl_seconds=90, missing_location_policy="reject", unknown_key="ignored")

    reloaded = UserSettingsStore(pointer_dir=tmp_path)

    assert reloaded.get("token_ttl_seconds") == 90
    assert reloaded.get("missing_location_policy") == "reject"
    assert "unknown_key" not in reloaded.data


def test_app_data_dir_redirects_settings_file(tmp_path: Path) -> None:
    data_dir = tmp_path / "shared"
    store = UserSettingsStore(pointer_dir=tmp_path / "pointer")
    store.update(app_data_dir=str(data_dir), token_ttl_seconds=120)

    assert json.loads((data_dir / "user_settings.json").read_text())["token_ttl_seconds"] == 120
    assert UserSettingsStore(pointer_dir=tmp_path / "pointer").app_data_dir == data_dir


def test_unreadable_file_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "user_settings.json").write_text("{not json", encoding="utf-8")

    store = UserSettingsStore(pointer_dir=tmp_path)

    assert store.get("error_reset_delay_seconds") == 1.5
