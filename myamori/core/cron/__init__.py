"""Cron scheduling: expression evaluator + SQLite job scheduler."""

from myamori.core.cron.expr import (
    CronError,
    CronSchedule,
    InvalidFieldCountError,
    InvalidRangeError,
    InvalidStepError,
    NoNextRunError,
    OutOfRangeError,
    get_next_run,
    parse_cron,
    parse_field,
)
from myamori.core.cron.scheduler import JobScheduler, SchedulerService
from myamori.core.cron.types import DispatchMessage, ScheduledJob

__all__ = [
    "CronError",
    "CronSchedule",
    "DispatchMessage",
    "InvalidFieldCountError",
    "InvalidRangeError",
    "InvalidStepError",
    "JobScheduler",
    "NoNextRunError",
    "OutOfRangeError",
    "ScheduledJob",
    "SchedulerService",
    "get_next_run",
    "parse_cron",
    "parse_field",
]
