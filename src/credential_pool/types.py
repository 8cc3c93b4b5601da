# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for the credential pool.

Enums describing providers and account state, plus the small dataclasses
passed between the selector, the invocation wrapper and provider adapters.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ENUMS
# =============================================================================


class Provider(str, Enum):
    """Third-party services an account can hold a credential for."""

    ASSEMBLYAI = "assemblyai"  # Audio transcription
    CLARIFAI = "clarifai"  # LLM transaction parsing (OpenAI-compatible)
    SPEECHMATICS = "speechmatics"  # Batch transcription
    ELEVENLABS = "elevenlabs"  # Text-to-speech


class AccountStatus(str, Enum):
    """Lifecycle state of an account."""

    ACTIVE = "active"
    EXHAUSTED = "exhausted"  # Capacity used up
    EXPIRED = "expired"  # Trial horizon passed
    ERROR = "error"  # Consecutive error threshold reached
    DISABLED = "disabled"  # Admin override


class PlanType(str, Enum):
    """Subscription plan; paid plans never expire."""

    FREE = "free"
    TRIAL = "trial"
    PAID = "paid"


class UsageCounter(str, Enum):
    """Cumulative counter a provider's usage quantity is added to."""

    AUDIO_SECONDS = "audio_seconds"
    CHARACTERS = "characters"
    NONE = "none"


# =============================================================================
# CALL RESULTS
# =============================================================================


@dataclass
class ProviderResponse:
    """
    Outcome of one successful provider call.

    `quantity` feeds the provider's usage counter (audio seconds or
    characters); `cost` is charged against the account's capacity.
    """

    data: Any
    quantity: float = 0.0
    cost: float = 0.0


@dataclass
class InvocationResult:
    """Result of one invocation through the pool."""

    success: bool
    provider: str
    data: Any = None
    error: Optional[str] = None
    account_used: Optional[str] = None
    account_id: Optional[int] = None
    duration_ms: int = 0
    quantity: float = 0.0
    cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "provider": self.provider,
            "accountUsed": self.account_used,
            "durationMs": self.duration_ms,
        }
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
        return payload


@dataclass
class AccountSummary:
    """Admin-facing view of an account; the credential is always masked."""

    id: int
    name: str
    provider: str
    credential: str
    priority: int
    status: str
    plan_type: str
    total_capacity: float
    used_capacity: float
    remaining_capacity: float
    usage_percentage: float
    rate_limit_max: int
    requests_this_window: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_audio_seconds: float
    total_audio_hours: float
    total_characters: int
    monthly_requests: int
    monthly_limit: int
    trial_ends_at: Optional[datetime]
    is_expired: bool
    has_capacity: bool
    last_used_at: Optional[datetime]
    last_error: Optional[str]
    error_count: int
    settings: Dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    created_at: Optional[datetime] = None
