"""arq worker settings module.

Import path for arq CLI: arq taskbuddy.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from taskbuddy.config import get_settings
from taskbuddy.workers.jobs import (
    audit_ledgers,
    deactivate_rewards,
    shutdown,
    startup,
    warn_streaks_at_risk,
)

_settings = get_settings()


class WorkerSettings:
    """arq worker settings for nightly reward cleanup, streak nudges and ledger audit."""

    functions = [deactivate_rewards, warn_streaks_at_risk, audit_ledgers]
    cron_jobs = [
        cron(
            deactivate_rewards,
            hour=_settings.reward_cleanup_hour_utc,
            minute=_settings.reward_cleanup_minute_utc,
        ),
        cron(warn_streaks_at_risk, hour=_settings.streak_risk_scan_hour_utc, minute=0),
        cron(audit_ledgers, hour=3, minute=30),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 600
