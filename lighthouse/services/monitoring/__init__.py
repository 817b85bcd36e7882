from lighthouse.services.monitoring.alerting import (
    AlertDecision,
    AlertType,
    is_status_up,
    record_transition,
    should_trigger_alert,
)
from lighthouse.services.monitoring.executor import CheckExecutor, ExecutionReport, ProbeOutcome
from lighthouse.services.monitoring.leases import (
    LocalCheckLeaseStore,
    RedisCheckLeaseStore,
    build_lease_store,
)
from lighthouse.services.monitoring.scheduler import CheckScheduler, TickSummary

__all__ = [
    "AlertDecision",
    "AlertType",
    "CheckExecutor",
    "CheckScheduler",
    "ExecutionReport",
    "LocalCheckLeaseStore",
    "ProbeOutcome",
    "RedisCheckLeaseStore",
    "TickSummary",
    "build_lease_store",
    "is_status_up",
    "record_transition",
    "should_trigger_alert",
]
