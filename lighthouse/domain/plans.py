from __future__ import annotations

from dataclasses import dataclass


PLAN_FREE = "free"
PLAN_INDIE_PRO = "indie_pro"
PLAN_TEAM = "team"
PLAN_AGENCY = "agency"

# Reverse trials grant the highest self-serve tier below agency.
TRIAL_PLAN = PLAN_TEAM

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024


@dataclass(frozen=True)
class PlanConfig:
    # Static limits per plan; sentinels differ per resource and must not be unified.
    id: str
    name: str
    monthly_price_cents: int
    # 0 = unlimited
    max_checks: int
    check_interval_min_seconds: int
    # <= 0 = unlimited
    log_volume_bytes_per_month: int
    log_retention_days: int
    # -1 = unlimited
    max_status_pages: int
    max_api_keys: int
    # -1 = unlimited, 0 = not available on the plan
    ai_level1_limit: int
    ai_level2_limit: int
    ai_level3_limit: int

    def ai_limit(self, level: int) -> int | None:
        return {
            1: self.ai_level1_limit,
            2: self.ai_level2_limit,
            3: self.ai_level3_limit,
        }.get(level)


PLAN_CONFIGS: dict[str, PlanConfig] = {
    PLAN_FREE: PlanConfig(
        id=PLAN_FREE,
        name="Free",
        monthly_price_cents=0,
        max_checks=5,
        check_interval_min_seconds=300,
        log_volume_bytes_per_month=500 * _MB,
        log_retention_days=7,
        max_status_pages=0,
        max_api_keys=2,
        ai_level1_limit=30,
        ai_level2_limit=0,
        ai_level3_limit=0,
    ),
    PLAN_INDIE_PRO: PlanConfig(
        id=PLAN_INDIE_PRO,
        name="Indie Pro",
        monthly_price_cents=1900,
        max_checks=25,
        check_interval_min_seconds=60,
        log_volume_bytes_per_month=5 * _GB,
        log_retention_days=30,
        max_status_pages=1,
        max_api_keys=5,
        ai_level1_limit=-1,
        ai_level2_limit=30,
        ai_level3_limit=0,
    ),
    PLAN_TEAM: PlanConfig(
        id=PLAN_TEAM,
        name="Team",
        monthly_price_cents=4900,
        max_checks=75,
        check_interval_min_seconds=60,
        log_volume_bytes_per_month=20 * _GB,
        log_retention_days=90,
        max_status_pages=3,
        max_api_keys=20,
        ai_level1_limit=-1,
        ai_level2_limit=-1,
        ai_level3_limit=30,
    ),
    PLAN_AGENCY: PlanConfig(
        id=PLAN_AGENCY,
        name="Agency",
        monthly_price_cents=14900,
        max_checks=250,
        check_interval_min_seconds=60,
        log_volume_bytes_per_month=50 * _GB,
        log_retention_days=180,
        max_status_pages=-1,
        max_api_keys=-1,
        ai_level1_limit=-1,
        ai_level2_limit=-1,
        ai_level3_limit=-1,
    ),
}

PLAN_ORDER = (PLAN_FREE, PLAN_INDIE_PRO, PLAN_TEAM, PLAN_AGENCY)


def is_valid_plan(plan_id: str | None) -> bool:
    return plan_id in PLAN_CONFIGS


def get_plan_config(plan_id: str | None) -> PlanConfig:
    # Unknown plan ids fall back to free limits.
    return PLAN_CONFIGS.get(plan_id or "", PLAN_CONFIGS[PLAN_FREE])


def list_plans() -> list[PlanConfig]:
    return [PLAN_CONFIGS[plan_id] for plan_id in PLAN_ORDER]
