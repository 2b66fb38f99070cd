"""Runtime settings for the social layer.

Every window and limit lives here so deployments can tune them through
``EVENTSOCIAL_*`` environment variables without touching code.
"""

from __future__ import annotations

import os
from datetime import timedelta

from pydantic import BaseModel, Field

ENV_PREFIX = "EVENTSOCIAL_"


class SocialSettings(BaseModel):
    # Phase windows
    pre_event_days: int = Field(default=7, ge=0)
    event_duration_hours: int = Field(default=12, gt=0)
    after_event_hours: int = Field(default=72, ge=0)
    archive_days: int = Field(default=7, ge=0)

    # Private conversations
    dm_retention_days: int = Field(default=7, ge=0)
    dm_daily_request_limit: int = Field(default=10, gt=0)
    dm_rejection_limit: int = Field(default=3, gt=0)
    dm_rejection_window_hours: int = Field(default=24, gt=0)
    dm_page_size: int = Field(default=100, gt=0)

    # Group channel
    group_page_size: int = Field(default=50, gt=0)
    group_rate_limit_count: int = Field(default=20, gt=0)
    group_rate_limit_seconds: int = Field(default=60, gt=0)
    default_mute_minutes: int = Field(default=60, gt=0)
    attendee_page_size: int = Field(default=50, gt=0)

    # Typing presence
    typing_ttl_seconds: float = Field(default=5.0, gt=0)
    typing_debounce_seconds: float = Field(default=2.0, ge=0)
    typing_idle_seconds: float = Field(default=2.0, gt=0)

    # External store
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def pre_event_window(self) -> timedelta:
        return timedelta(days=self.pre_event_days)

    @property
    def event_duration(self) -> timedelta:
        return timedelta(hours=self.event_duration_hours)

    @property
    def after_event_window(self) -> timedelta:
        return timedelta(hours=self.after_event_hours)

    @property
    def archive_window(self) -> timedelta:
        return timedelta(days=self.archive_days)

    @property
    def dm_retention(self) -> timedelta:
        return timedelta(days=self.dm_retention_days)

    @property
    def typing_ttl(self) -> timedelta:
        return timedelta(seconds=self.typing_ttl_seconds)

    @property
    def typing_debounce(self) -> timedelta:
        return timedelta(seconds=self.typing_debounce_seconds)

    @property
    def typing_idle(self) -> timedelta:
        return timedelta(seconds=self.typing_idle_seconds)


def load_settings(environ: dict[str, str] | None = None) -> SocialSettings:
    """Build settings from ``EVENTSOCIAL_*`` variables.

    Unknown variables are ignored; values are validated by the model, so a
    malformed number fails loudly at startup rather than at first use.
    """
    env = os.environ if environ is None else environ
    overrides = {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in env.items()
        if key.startswith(ENV_PREFIX)
    }
    known = {k: v for k, v in overrides.items() if k in SocialSettings.model_fields}
    return SocialSettings.model_validate(known)
