"""Per-account notification filter settings.

Stored and exchanged as camelCase JSON (the shape browser and Android clients
send). ``FilterSettings()`` is the documented default; partial updates go
through :meth:`FilterSettings.merge`, never through ad-hoc dict unions.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> int | None:
    """Return minutes-of-day for ``HH:MM``, or ``None`` when unparseable."""
    match = _HHMM_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


class FilterSettings(BaseModel):
    """User-editable filter rules for one account.

    Defaults: mentions and DMs on, other stream traffic off, own messages
    muted, quiet hours/days off. Quiet days use 0=Sunday .. 6=Saturday.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    version: int = Field(default=SETTINGS_VERSION)

    notify_on_mention: bool = Field(default=True, alias="notifyOnMention")
    notify_on_dm: bool = Field(
        default=True,
        alias="notifyOnDM",
        validation_alias=AliasChoices("notifyOnDM", "notifyOnPM", "notify_on_dm"),
    )
    notify_on_other: bool = Field(default=False, alias="notifyOnOther")
    mute_self_messages: bool = Field(default=True, alias="muteSelfMessages")

    muted_streams: tuple[str, ...] = Field(default=(), alias="mutedStreams")
    muted_topics: tuple[str, ...] = Field(default=(), alias="mutedTopics")

    quiet_hours_enabled: bool = Field(default=False, alias="quietHoursEnabled")
    quiet_hours_start: str = Field(default="22:00", alias="quietHoursStart")
    quiet_hours_end: str = Field(default="07:00", alias="quietHoursEnd")

    quiet_days_enabled: bool = Field(default=False, alias="quietDaysEnabled")
    quiet_days: frozenset[int] = Field(default=frozenset(), alias="quietDays")

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _validate_hhmm(cls, value: str) -> str:
        if parse_hhmm(value) is None:
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value.strip()

    @field_validator("quiet_days")
    @classmethod
    def _validate_days(cls, value: frozenset[int]) -> frozenset[int]:
        bad = [d for d in value if not 0 <= d <= 6]
        if bad:
            raise ValueError(f"weekday indices must be 0-6, got {sorted(bad)}")
        return value

    @field_validator("muted_streams", "muted_topics")
    @classmethod
    def _drop_blank(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(v for v in value if v and v.strip())

    # --- Construction / patching ------------------------------------------------

    def merge(self, patch: dict[str, Any] | None) -> FilterSettings:
        """Return a copy with *patch* applied.

        Keys may use either wire (camelCase) or field names; unknown keys are
        dropped. Invalid values raise :class:`pydantic.ValidationError`.
        """
        if not patch:
            return self
        merged = self.to_wire()
        for key, value in patch.items():
            name = _WIRE_NAMES.get(key, key)
            if name in _FIELD_ALIASES:
                merged[_FIELD_ALIASES[name]] = value
        return FilterSettings.model_validate(merged)

    @classmethod
    def from_stored(cls, raw: Any) -> FilterSettings:
        """Load stored settings, falling back to defaults on anything malformed."""
        if raw is None:
            return cls()
        try:
            if isinstance(raw, (str, bytes)):
                return cls.model_validate_json(raw)
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding malformed filter settings (%d errors)", e.error_count())
            return cls()

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["mutedStreams"] = list(self.muted_streams)
        data["mutedTopics"] = list(self.muted_topics)
        data["quietDays"] = sorted(self.quiet_days)
        return data


# field name -> wire alias, and every accepted spelling -> field name
_FIELD_ALIASES: dict[str, str] = {
    name: (field.alias or name) for name, field in FilterSettings.model_fields.items()
}
_WIRE_NAMES: dict[str, str] = {alias: name for name, alias in _FIELD_ALIASES.items()}
_WIRE_NAMES["notifyOnPM"] = "notify_on_dm"

DEFAULT_FILTER_SETTINGS = FilterSettings()
