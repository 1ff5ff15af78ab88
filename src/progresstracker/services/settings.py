"""Typed, cached access to the ``settings`` table.

Values are stored as text next to a type tag (``string``, ``boolean`` or
``number``) and decoded on read. Reads go through an in-process cache that is
refreshed wholesale once its TTL has passed; writes update the database first
and then the cached entry, so a read straight after a write sees the new value.

Failure policy: a failed refresh is logged and the previous cache keeps being
served; a failed write or delete is logged and raised to the caller.

Lock order is always database first, settings store second: the store lock
is only held around cache reads and swaps, never while calling into the
database. Cache changes made inside a transaction are dropped (the cache is
invalidated) if that transaction or savepoint rolls back.
"""

from __future__ import annotations

import dataclasses
import json
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from ..config import BaseConfig
from ..infra.database import Database
from ..logging_config import get_logger
from ..models.settings import SETTING_TYPES, Setting, SettingType

logger = get_logger("settings")

SettingValue = Union[str, bool, int, float]

DEFAULT_REPORT_SCHEDULE = "0 9 * * 1"  # Monday 09:00

# List-valued settings persisted as JSON text, with the description stored alongside.
JSON_LIST_SETTINGS: dict[str, str] = {
    "weekly_report_recipients": "List of recipient emails for weekly reports",
    "weekly_report_profiles": "Array of weekly report profiles (JSON)",
}


def infer_type(value: Any) -> SettingType:
    """Map a Python value to the stored type tag."""

    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def encode_value(value: Any) -> str:
    """Text form written to the ``value`` column."""

    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_number(text: str) -> Union[int, float]:
    stripped = text.strip()
    if not stripped:
        return 0
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        return float(stripped)
    except ValueError:
        return math.nan


def decode_value(value: str, value_type: Optional[str]) -> Any:
    """Inverse of ``encode_value`` for the given type tag. Never raises."""

    if value_type == "boolean":
        return str(value).lower() == "true"
    if value_type == "number":
        return _parse_number(str(value))
    return value


def _json_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dump_json_list(items: Any) -> str:
    """Compact JSON text for list-valued settings."""

    return json.dumps(list(items), separators=(",", ":"), ensure_ascii=False, default=_json_default)


def _load_json_list(text: Any) -> list[Any]:
    """Decode a JSON list setting, falling back to ``[]`` on anything malformed."""

    if not isinstance(text, str) or not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.warning("Ignoring malformed JSON list setting: %.80s", text)
        return []
    return parsed if isinstance(parsed, list) else []


@dataclass(frozen=True)
class WeeklyReportProfile:
    """One weekly report audience with its own schedule and template."""

    id: str
    name: str
    cron: str
    recipients: list[str] = field(default_factory=list)
    template: str = "self"  # self | manager | company
    enabled: bool = True
    sections: Optional[dict[str, bool]] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WeeklyReportProfile":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            cron=str(data.get("cron", DEFAULT_REPORT_SCHEDULE)),
            recipients=[str(r) for r in data.get("recipients") or []],
            template=str(data.get("template", "self")),
            enabled=bool(data.get("enabled", True)),
            sections=data.get("sections"),
        )


@dataclass(frozen=True)
class EmailSettings:
    """Everything the weekly report job reads from settings in one snapshot."""

    weekly_report_email: str
    weekly_report_recipients: list[str]
    weekly_reports_enabled: bool
    weekly_report_schedule: str
    sendgrid_from_email: str
    sendgrid_from_name: str
    timezone: str
    primary_project_id: str
    weekly_report_profiles: list[WeeklyReportProfile]
    weekly_use_ai_status: bool
    weekly_narrative_only: bool


@dataclass(frozen=True)
class LLMPreferences:
    """Personalisation knobs applied to AI requests."""

    tone: str
    detail_level: str
    language: str
    system_prompt_mode: str
    system_prompt: str
    preset_template: str


class SettingsStore:
    """Read-through / write-through cache over the ``settings`` table."""

    def __init__(
        self,
        db: Database,
        *,
        config: Optional[BaseConfig] = None,
        cache_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db = db
        self.config = config or BaseConfig()
        self.cache_seconds = (
            self.config.SETTINGS_CACHE_SECONDS if cache_seconds is None else cache_seconds
        )
        self._clock = clock
        self._cache: dict[str, Setting] = {}
        # None means "never loaded": the first read always hits the database.
        self._expiry: Optional[float] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ cache

    def _is_stale(self) -> bool:
        return self._expiry is None or self._clock() >= self._expiry

    def _refresh_cache(self) -> None:
        """Reload every row; on failure keep serving what is already cached."""

        try:
            with self.db.transaction_scope():
                result = self.db.query("SELECT * FROM settings")
                fresh = {row["key"]: Setting.from_row(row) for row in result.rows}
                # Rows read inside a caller's transaction may never be committed.
                self.db.on_rollback(self.invalidate)
                with self._lock:
                    self._cache = fresh
                    self._expiry = self._clock() + self.cache_seconds
        except Exception:
            logger.error("Failed to refresh settings cache", exc_info=True)

    def _ensure_fresh(self) -> None:
        with self._lock:
            stale = self._is_stale()
        if stale:
            self._refresh_cache()

    def invalidate(self) -> None:
        """Mark the cache stale so the next read reloads from the database."""

        with self._lock:
            self._expiry = None

    # ------------------------------------------------------------------ reads

    def get(self, key: str, default: Any = None) -> Any:
        """Decoded value of ``key``, or ``default`` untouched when it is not set."""

        self._ensure_fresh()
        with self._lock:
            setting = self._cache.get(key)
        if setting is None:
            return default
        return decode_value(setting.value, setting.type)

    def get_all(self) -> dict[str, Any]:
        self._ensure_fresh()
        with self._lock:
            snapshot = list(self._cache.values())
        return {s.key: decode_value(s.value, s.type) for s in snapshot}

    def get_all_with_metadata(self) -> list[dict[str, Any]]:
        """Every setting with its metadata columns and the value decoded."""

        self._ensure_fresh()
        with self._lock:
            snapshot = list(self._cache.values())
        records = []
        for setting in snapshot:
            record = setting.model_dump()
            record["value"] = decode_value(setting.value, setting.type)
            records.append(record)
        return records

    # ------------------------------------------------------------------ writes

    def set(
        self,
        key: str,
        value: SettingValue,
        value_type: Optional[SettingType] = None,
        description: Optional[str] = None,
    ) -> None:
        """Insert or update ``key`` and write the result through to the cache."""

        string_value = encode_value(value)
        setting_type = value_type or infer_type(value)
        if setting_type not in SETTING_TYPES:
            raise ValueError(f"Unknown setting type {setting_type!r} for {key!r}")

        try:
            with self.db.transaction_scope():
                existing = self.db.query("SELECT key FROM settings WHERE key = ?", [key])
                existed = bool(existing.rows)
                if existed:
                    self.db.query(
                        "UPDATE settings SET value = ?, type = ?, updated_at = datetime('now') "
                        "WHERE key = ?",
                        [string_value, setting_type, key],
                    )
                else:
                    self.db.query(
                        "INSERT INTO settings (key, value, type, description) VALUES (?, ?, ?, ?)",
                        [key, string_value, setting_type, description or ""],
                    )
                self.db.on_rollback(self.invalidate)
                self._write_through(key, string_value, setting_type, description, existed)
        except Exception:
            logger.error("Failed to set setting %s", key, exc_info=True)
            raise

    def _write_through(
        self,
        key: str,
        string_value: str,
        setting_type: str,
        description: Optional[str],
        existed: bool,
    ) -> None:
        # Same text format as SQLite's datetime('now').
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        with self._lock:
            previous = self._cache.get(key)
            if existed:
                # UPDATE leaves the stored description alone.
                cached_description = previous.description if previous else None
            else:
                cached_description = description or ""
            self._cache[key] = Setting(
                key=key,
                value=string_value,
                type=setting_type,
                description=cached_description,
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )

    def update(self, settings: dict[str, Any]) -> None:
        """Apply ``set`` for each entry in order. Earlier entries stay written if a later one fails."""

        try:
            for key, value in settings.items():
                if key in JSON_LIST_SETTINGS and isinstance(value, (list, tuple)):
                    self.set(key, dump_json_list(value), "string", JSON_LIST_SETTINGS[key])
                else:
                    self.set(key, value)
        except Exception:
            logger.error("Failed to update settings", exc_info=True)
            raise

    def delete(self, key: str) -> None:
        try:
            with self.db.transaction_scope():
                self.db.query("DELETE FROM settings WHERE key = ?", [key])
                self.db.on_rollback(self.invalidate)
                with self._lock:
                    self._cache.pop(key, None)
        except Exception:
            logger.error("Failed to delete setting %s", key, exc_info=True)
            raise

    def _default_rows(self) -> list[tuple[str, str, str, str]]:
        cfg = self.config
        return [
            ("weekly_report_email", cfg.DEFAULT_REPORT_EMAIL, "string", "Email address for weekly reports"),
            ("weekly_report_recipients", "[]", "string", JSON_LIST_SETTINGS["weekly_report_recipients"]),
            ("weekly_reports_enabled", "true", "boolean", "Enable/disable automatic weekly reports"),
            ("weekly_report_schedule", DEFAULT_REPORT_SCHEDULE, "string",
             "Cron schedule for weekly reports (default: Monday 9 AM)"),
            ("sendgrid_from_email", cfg.SENDGRID_FROM_EMAIL, "string", "From email address for SendGrid"),
            ("sendgrid_from_name", cfg.SENDGRID_FROM_NAME, "string", "From name for SendGrid"),
            ("timezone", cfg.TIMEZONE, "string", "Timezone for scheduling"),
            ("primary_project_id", "", "string", "Primary project to focus weekly reports on"),
            ("weekly_report_profiles", "[]", "string", JSON_LIST_SETTINGS["weekly_report_profiles"]),
            ("weekly_use_ai_status", "true", "boolean",
             "Use AI status report for primary project in weekly emails"),
            ("weekly_narrative_only", "true", "boolean",
             "Use AI narrative only (no raw lists) in weekly emails"),
            ("llm_tone", "professional", "string", "Tone style for AI responses"),
            ("llm_detail_level", "balanced", "string", "Response detail level preference"),
            ("llm_language", "auto", "string", "Preferred response language"),
            ("llm_system_prompt_mode", "generated", "string", "System prompt mode: generated or custom"),
            ("llm_system_prompt", "", "string",
             "Custom global system prompt prepended to all AI requests"),
            ("llm_preset_template", "default", "string", "Selected prompt template preset"),
        ]

    def initialize_defaults(self) -> int:
        """Seed well-known keys that are missing. Returns how many rows were inserted."""

        inserted = 0
        try:
            with self.db.transaction_scope():
                for key, value, value_type, description in self._default_rows():
                    existing = self.db.query("SELECT key FROM settings WHERE key = ?", [key])
                    if existing.rows:
                        continue
                    self.db.query(
                        "INSERT INTO settings (key, value, type, description) VALUES (?, ?, ?, ?)",
                        [key, value, value_type, description],
                    )
                    inserted += 1
        except Exception:
            logger.error("Failed to initialize default settings", exc_info=True)
            raise
        self._refresh_cache()

        if inserted:
            logger.info("Seeded %d default settings", inserted)
        return inserted

    # ------------------------------------------------------------------ named accessors

    def get_weekly_report_email(self) -> str:
        return self.get("weekly_report_email", self.config.DEFAULT_REPORT_EMAIL)

    def set_weekly_report_email(self, email: str) -> None:
        self.set("weekly_report_email", email, "string", "Email address for weekly reports")

    def get_weekly_report_recipients(self) -> list[str]:
        return [str(r) for r in _load_json_list(self.get("weekly_report_recipients", "[]"))]

    def set_weekly_report_recipients(self, emails: list[str]) -> None:
        self.set(
            "weekly_report_recipients",
            dump_json_list(emails),
            "string",
            JSON_LIST_SETTINGS["weekly_report_recipients"],
        )

    def is_weekly_reports_enabled(self) -> bool:
        return self.get("weekly_reports_enabled", True)

    def set_weekly_reports_enabled(self, enabled: bool) -> None:
        self.set("weekly_reports_enabled", enabled, "boolean", "Enable/disable automatic weekly reports")

    def get_weekly_report_schedule(self) -> str:
        return self.get("weekly_report_schedule", DEFAULT_REPORT_SCHEDULE)

    def set_weekly_report_schedule(self, schedule: str) -> None:
        self.set("weekly_report_schedule", schedule, "string", "Cron schedule for weekly reports")

    def get_timezone(self) -> str:
        return self.get("timezone", self.config.TIMEZONE)

    def get_weekly_profiles(self) -> list[WeeklyReportProfile]:
        profiles = []
        for item in _load_json_list(self.get("weekly_report_profiles", "[]")):
            try:
                profiles.append(WeeklyReportProfile.from_dict(item))
            except (KeyError, TypeError, AttributeError):
                logger.warning("Skipping malformed weekly report profile: %r", item)
        return profiles

    def get_llm_preferences(self) -> LLMPreferences:
        return LLMPreferences(
            tone=self.get("llm_tone", "professional"),
            detail_level=self.get("llm_detail_level", "balanced"),
            language=self.get("llm_language", "auto"),
            system_prompt_mode=self.get("llm_system_prompt_mode", "generated"),
            system_prompt=self.get("llm_system_prompt", ""),
            preset_template=self.get("llm_preset_template", "default"),
        )

    def get_email_settings(self) -> EmailSettings:
        cfg = self.config
        return EmailSettings(
            weekly_report_email=self.get_weekly_report_email(),
            weekly_report_recipients=self.get_weekly_report_recipients(),
            weekly_reports_enabled=self.is_weekly_reports_enabled(),
            weekly_report_schedule=self.get_weekly_report_schedule(),
            sendgrid_from_email=self.get("sendgrid_from_email", cfg.SENDGRID_FROM_EMAIL),
            sendgrid_from_name=self.get("sendgrid_from_name", cfg.SENDGRID_FROM_NAME),
            timezone=self.get_timezone(),
            primary_project_id=self.get("primary_project_id", ""),
            weekly_report_profiles=self.get_weekly_profiles(),
            weekly_use_ai_status=self.get("weekly_use_ai_status", True),
            weekly_narrative_only=self.get("weekly_narrative_only", True),
        )
