"""Unit tests for the preference store."""

from datetime import datetime, timezone

from recall.config import Settings
from recall.database.preferences import (
    LAST_BACKUP_HASH,
    LAST_INCREMENTAL_SYNC_AT,
    REVIEWED_COUNT,
    PreferenceStore,
)
from recall.models import SyncPreferences


def test_get_returns_default_when_missing(prefs: PreferenceStore) -> None:
    assert prefs.get("missing") is None
    assert prefs.get("missing", 7) == 7


def test_set_overwrites(prefs: PreferenceStore) -> None:
    prefs.set("wifi_only", False)
    prefs.set("wifi_only", True)
    assert prefs.get("wifi_only") is True


def test_datetime_round_trip(prefs: PreferenceStore) -> None:
    when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    prefs.set_datetime(LAST_INCREMENTAL_SYNC_AT, when)
    assert prefs.get_datetime(LAST_INCREMENTAL_SYNC_AT) == when
    assert prefs.get_datetime("never-set") is None


def test_load_sync_preferences_uses_settings_defaults(
    prefs: PreferenceStore, settings: Settings
) -> None:
    """Unset keys fall back to the configured defaults."""
    loaded = prefs.load_sync_preferences(settings)
    assert loaded.auto_sync_enabled is True
    assert loaded.quiet_hours_start == 22
    assert loaded.quiet_hours_end == 7
    assert loaded.min_battery_percent == 15
    assert loaded.silent_sync is True


def test_saved_preferences_override_defaults(
    prefs: PreferenceStore, settings: Settings
) -> None:
    current = prefs.load_sync_preferences(settings)
    prefs.save_sync_preferences(current.model_copy(update={"wifi_only": True}))
    prefs.set("min_battery_percent", 40)
    loaded = prefs.load_sync_preferences(settings)
    expected = SyncPreferences(
        **{**current.model_dump(), "wifi_only": True, "min_battery_percent": 40}
    )
    assert loaded == expected


def test_export_settings_excludes_bookkeeping(prefs: PreferenceStore) -> None:
    """Hash, timestamps and counters never reach a backup snapshot."""
    prefs.set("wifi_only", True)
    prefs.set(LAST_BACKUP_HASH, "abc")
    prefs.set(REVIEWED_COUNT, 3)
    prefs.set_datetime(LAST_INCREMENTAL_SYNC_AT, datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert prefs.export_settings() == {"wifi_only": True}
