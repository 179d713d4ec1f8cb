"""Scheduling for timetable.

Guardrails:
    ❌ Starting a chain without an admission check
    ❌ Repairing runs before holding the scheduler identity
    ✅ One live scheduler per client name, enforced by the store
"""

from .admission import AdmissionController
from .identity import IdentityGuard
from .recovery import CrashRecovery
from .schedule import Schedule, ScheduleEvaluator
from .service import SchedulerService, SchedulerStats

__all__ = [
    "AdmissionController",
    "CrashRecovery",
    "IdentityGuard",
    "Schedule",
    "ScheduleEvaluator",
    "SchedulerService",
    "SchedulerStats",
]
