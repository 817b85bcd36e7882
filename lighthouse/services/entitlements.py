from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple

from lighthouse.domain.plans import (
    PLAN_FREE,
    TRIAL_PLAN,
    get_plan_config,
    is_valid_plan,
)


RESOURCE_CHECKS = "checks"
RESOURCE_LOG_VOLUME = "log_volume"
RESOURCE_STATUS_PAGES = "status_pages"
RESOURCE_API_KEYS = "api_keys"
RESOURCE_AI_LEVEL1 = "ai_level1"
RESOURCE_AI_LEVEL2 = "ai_level2"
RESOURCE_AI_LEVEL3 = "ai_level3"

SUBSCRIPTION_CANCELED = "canceled"
# Statuses that mean the org holds a paid relationship with the billing provider.
PAID_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "past_due"})

LOG_WARNING_RATIO = 0.8
LOG_LIMIT_RATIO = 1.0
LOG_HARD_REJECT_RATIO = 1.5

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024


class OrganizationLike:
    # Minimal organization view for plan resolution.
    plan: str
    is_trialing: bool
    trial_end_at: datetime | None
    stripe_subscription_status: str | None


@dataclass(frozen=True)
class UsageSnapshot:
    # Point-in-time consumption across billable dimensions.
    check_count: int = 0
    log_volume_bytes: int = 0
    status_page_count: int = 0
    api_key_count: int = 0
    ai_level1_calls: int = 0
    ai_level2_calls: int = 0
    ai_level3_calls: int = 0
    period_start: datetime | None = None


@dataclass(frozen=True)
class Violation:
    resource: str
    current: int
    limit: int
    message: str


@dataclass(frozen=True)
class EntitlementResult:
    within_limits: bool
    violations: list[Violation] = field(default_factory=list)
    # resource -> usage ratio; 0 for unlimited resources.
    thresholds: dict[str, float] = field(default_factory=dict)


class LimitDecision(NamedTuple):
    allowed: bool
    message: str


class LogIngestDecision(NamedTuple):
    allowed: bool
    warning: bool
    message: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def has_paid_subscription(status: str | None) -> bool:
    return status in PAID_SUBSCRIPTION_STATUSES


def is_trial_active(org: OrganizationLike, *, now: datetime | None = None) -> bool:
    current = now or _utc_now()
    return bool(org.is_trialing and org.trial_end_at is not None and org.trial_end_at > current)


def effective_plan(org: OrganizationLike, *, now: datetime | None = None) -> str:
    """Resolve the plan whose limits apply right now.

    An active trial wins over everything else. Otherwise unknown plans and paid
    plans whose subscription is canceled fall back to free; ``past_due`` keeps
    full paid access while the billing provider runs dunning.
    """
    if is_trial_active(org, now=now):
        return TRIAL_PLAN
    if not is_valid_plan(org.plan):
        return PLAN_FREE
    if org.plan == PLAN_FREE:
        return PLAN_FREE
    if org.stripe_subscription_status == SUBSCRIPTION_CANCELED:
        return PLAN_FREE
    return org.plan


def format_bytes(num_bytes: int) -> str:
    # Binary units with one decimal place; raw bytes below 1 KB.
    if num_bytes >= _GB:
        return f"{num_bytes / _GB:.1f} GB"
    if num_bytes >= _MB:
        return f"{num_bytes / _MB:.1f} MB"
    if num_bytes >= _KB:
        return f"{num_bytes / _KB:.1f} KB"
    return f"{num_bytes} B"


def _check_counted_limit(
    *,
    resource: str,
    label: str,
    current: int,
    limit: int,
    thresholds: dict[str, float],
    violations: list[Violation],
) -> None:
    # -1 = unlimited; 0 = unavailable, so any usage is a violation.
    if limit < 0:
        thresholds[resource] = 0.0
        return
    if limit > 0:
        thresholds[resource] = current / limit
    if current > limit:
        violations.append(
            Violation(
                resource=resource,
                current=current,
                limit=limit,
                message=f"{label} limit exceeded: {current}/{limit}",
            )
        )


def check_entitlements(plan: str, usage: UsageSnapshot) -> EntitlementResult:
    # Read-only evaluation shared by enforcement and billing displays.
    config = get_plan_config(plan)
    thresholds: dict[str, float] = {}
    violations: list[Violation] = []

    # Checks: 0 = unlimited.
    if config.max_checks > 0:
        thresholds[RESOURCE_CHECKS] = usage.check_count / config.max_checks
        if usage.check_count > config.max_checks:
            violations.append(
                Violation(
                    resource=RESOURCE_CHECKS,
                    current=usage.check_count,
                    limit=config.max_checks,
                    message=f"Check limit exceeded: {usage.check_count}/{config.max_checks}",
                )
            )
    else:
        thresholds[RESOURCE_CHECKS] = 0.0

    log_limit = config.log_volume_bytes_per_month
    if log_limit > 0:
        thresholds[RESOURCE_LOG_VOLUME] = usage.log_volume_bytes / log_limit
        if usage.log_volume_bytes > log_limit:
            violations.append(
                Violation(
                    resource=RESOURCE_LOG_VOLUME,
                    current=usage.log_volume_bytes,
                    limit=log_limit,
                    message=(
                        "Log volume limit exceeded: "
                        f"{format_bytes(usage.log_volume_bytes)}/{format_bytes(log_limit)}"
                    ),
                )
            )
    else:
        thresholds[RESOURCE_LOG_VOLUME] = 0.0

    counted = (
        (RESOURCE_STATUS_PAGES, "Status page", usage.status_page_count, config.max_status_pages),
        (RESOURCE_API_KEYS, "API key", usage.api_key_count, config.max_api_keys),
        (RESOURCE_AI_LEVEL1, "AI Level 1", usage.ai_level1_calls, config.ai_level1_limit),
        (RESOURCE_AI_LEVEL2, "AI Level 2", usage.ai_level2_calls, config.ai_level2_limit),
        (RESOURCE_AI_LEVEL3, "AI Level 3", usage.ai_level3_calls, config.ai_level3_limit),
    )
    for resource, label, current, limit in counted:
        _check_counted_limit(
            resource=resource,
            label=label,
            current=current,
            limit=limit,
            thresholds=thresholds,
            violations=violations,
        )

    return EntitlementResult(
        within_limits=not violations,
        violations=violations,
        thresholds=thresholds,
    )


def can_create_check(plan: str, current_count: int) -> LimitDecision:
    config = get_plan_config(plan)
    if config.max_checks <= 0:
        return LimitDecision(True, "")
    if current_count >= config.max_checks:
        return LimitDecision(
            False,
            f"Check limit reached ({current_count}/{config.max_checks}). "
            "Upgrade your plan to add more checks.",
        )
    return LimitDecision(True, "")


def can_create_api_key(plan: str, current_count: int) -> LimitDecision:
    config = get_plan_config(plan)
    if config.max_api_keys < 0:
        return LimitDecision(True, "")
    if current_count >= config.max_api_keys:
        return LimitDecision(
            False,
            f"API key limit reached ({current_count}/{config.max_api_keys}). "
            "Upgrade your plan to add more.",
        )
    return LimitDecision(True, "")


def can_create_status_page(plan: str, current_count: int) -> LimitDecision:
    config = get_plan_config(plan)
    if config.max_status_pages < 0:
        return LimitDecision(True, "")
    if current_count >= config.max_status_pages:
        return LimitDecision(
            False,
            f"Status page limit reached ({current_count}/{config.max_status_pages}). "
            "Upgrade your plan to add more.",
        )
    return LimitDecision(True, "")


def can_use_check_interval(plan: str, interval_seconds: int) -> LimitDecision:
    config = get_plan_config(plan)
    if interval_seconds < config.check_interval_min_seconds:
        return LimitDecision(
            False,
            f"Minimum check interval for {config.name} plan is "
            f"{config.check_interval_min_seconds} seconds. Upgrade for faster intervals.",
        )
    return LimitDecision(True, "")


def can_use_ai(plan: str, level: int, current_calls: int) -> LimitDecision:
    config = get_plan_config(plan)
    limit = config.ai_limit(level)
    if limit is None:
        return LimitDecision(False, "Invalid AI level")
    if limit < 0:
        return LimitDecision(True, "")
    if limit == 0:
        return LimitDecision(
            False,
            f"AI Level {level} is not available on your plan. Upgrade to access this feature.",
        )
    if current_calls >= limit:
        return LimitDecision(
            False,
            f"AI Level {level} limit reached ({current_calls}/{limit}). Limit resets next month.",
        )
    return LimitDecision(True, "")


def can_ingest_logs(plan: str, current_bytes: int, incoming_bytes: int) -> LogIngestDecision:
    """Three-tier admission for log ingestion.

    ratio >= 1.5 rejects; [1.0, 1.5) admits with a "limit reached" warning;
    [0.8, 1.0) admits with an "approaching" warning; below 0.8 admits silently.
    """
    config = get_plan_config(plan)
    limit = config.log_volume_bytes_per_month
    if limit <= 0:
        return LogIngestDecision(True, False, "")
    new_total = current_bytes + incoming_bytes
    ratio = new_total / limit
    if ratio >= LOG_HARD_REJECT_RATIO:
        return LogIngestDecision(
            False,
            True,
            f"Log volume limit exceeded ({format_bytes(new_total)}/{format_bytes(limit)}). "
            "Upgrade your plan to continue ingesting logs.",
        )
    if ratio >= LOG_LIMIT_RATIO:
        return LogIngestDecision(
            True,
            True,
            f"Log limit reached: {format_bytes(new_total)}/{format_bytes(limit)}. "
            "New logs may be rejected soon.",
        )
    if ratio >= LOG_WARNING_RATIO:
        return LogIngestDecision(
            True,
            True,
            f"Approaching log limit: {format_bytes(new_total)}/{format_bytes(limit)} "
            f"({ratio * 100:.0f}%)",
        )
    return LogIngestDecision(True, False, "")
