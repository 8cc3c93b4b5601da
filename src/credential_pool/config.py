# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Per-provider configuration for the credential pool.

Every provider shares the same tracker and selector; the differences between
them (capacity unit, default rate limit, default priority, trial horizon,
which usage counter a call feeds) live here.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .types import PlanType, Provider, UsageCounter

lib_logger = logging.getLogger("credential_pool")


# =============================================================================
# CONSTANTS
# =============================================================================

RATE_WINDOW_SECONDS = 60
ERROR_THRESHOLD = 5
MONTHLY_RESET_DAYS = 30

# AssemblyAI Nano tier: $0.12/hour
ASSEMBLYAI_COST_PER_SECOND = 0.00003333

CLARIFAI_PRIORITY_MIN = 1
CLARIFAI_PRIORITY_MAX = 100


# =============================================================================
# PROVIDER CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class ProviderConfig:
    """
    Defaults and accounting rules for one provider.

    A `default_total_capacity` of 0 means accounts are unlimited unless the
    admin sets a capacity. A `default_monthly_limit` of 0 disables the
    rolling monthly request quota.
    """

    provider: Provider
    display_name: str
    capacity_unit: str  # "usd", "credits", "requests"
    default_priority: int
    default_rate_limit: int
    default_total_capacity: float = 0.0
    default_plan_type: PlanType = PlanType.TRIAL
    trial_days: Optional[int] = None  # None = no trial horizon
    default_monthly_limit: int = 0
    usage_counter: UsageCounter = UsageCounter.NONE
    priority_range: Optional[tuple] = None
    default_settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def default_name(self) -> str:
        return f"{self.display_name} Account"


DEFAULT_PROVIDER_CONFIGS: Dict[Provider, ProviderConfig] = {
    Provider.ASSEMBLYAI: ProviderConfig(
        provider=Provider.ASSEMBLYAI,
        display_name="AssemblyAI",
        capacity_unit="usd",
        default_priority=1,
        default_rate_limit=5,
        default_total_capacity=50.0,  # $50 free tier
        default_plan_type=PlanType.TRIAL,
        trial_days=90,
        usage_counter=UsageCounter.AUDIO_SECONDS,
        default_settings={"language_code": "en"},
    ),
    Provider.CLARIFAI: ProviderConfig(
        provider=Provider.CLARIFAI,
        display_name="Clarifai",
        capacity_unit="requests",
        default_priority=1,
        default_rate_limit=20,
        default_plan_type=PlanType.FREE,
        trial_days=None,
        default_monthly_limit=1000,
        usage_counter=UsageCounter.NONE,
        priority_range=(CLARIFAI_PRIORITY_MIN, CLARIFAI_PRIORITY_MAX),
        default_settings={
            "user_id": "openai",
            "app_id": "chat-completion",
            "model_id": "gpt-oss-120b",
        },
    ),
    Provider.SPEECHMATICS: ProviderConfig(
        provider=Provider.SPEECHMATICS,
        display_name="Speechmatics",
        capacity_unit="credits",
        default_priority=10,
        default_rate_limit=10,
        default_plan_type=PlanType.TRIAL,
        trial_days=30,
        usage_counter=UsageCounter.AUDIO_SECONDS,
        default_settings={"language": "bn", "operating_point": "standard"},
    ),
    Provider.ELEVENLABS: ProviderConfig(
        provider=Provider.ELEVENLABS,
        display_name="ElevenLabs",
        capacity_unit="credits",
        default_priority=5,
        default_rate_limit=20,
        default_plan_type=PlanType.TRIAL,
        trial_days=30,
        usage_counter=UsageCounter.CHARACTERS,
        default_settings={
            "voice_id": "pNInz6obpgDQGcFmaJgB",
            "model_id": "eleven_multilingual_v2",
        },
    ),
}


def _int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        lib_logger.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return None


def load_provider_configs() -> Dict[Provider, ProviderConfig]:
    """
    Build provider configs, applying environment overrides.

    Recognised overrides per provider: `<PROVIDER>_DEFAULT_PRIORITY` and
    `<PROVIDER>_RATE_LIMIT` (e.g. `SPEECHMATICS_RATE_LIMIT=15`).
    """
    configs: Dict[Provider, ProviderConfig] = {}
    for provider, config in DEFAULT_PROVIDER_CONFIGS.items():
        prefix = provider.value.upper()
        overrides: Dict[str, Any] = {}

        priority = _int_env(f"{prefix}_DEFAULT_PRIORITY")
        if priority is not None:
            overrides["default_priority"] = priority

        rate_limit = _int_env(f"{prefix}_RATE_LIMIT")
        if rate_limit is not None and rate_limit > 0:
            overrides["default_rate_limit"] = rate_limit

        configs[provider] = replace(config, **overrides) if overrides else config
    return configs


def parse_provider(value: Any) -> Optional[Provider]:
    """Normalise a provider name; returns None for unknown values."""
    if isinstance(value, Provider):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Provider(value.strip().lower())
    except ValueError:
        return None
