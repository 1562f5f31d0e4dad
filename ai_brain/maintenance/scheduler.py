from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler

from ai_brain.config import is_scheduled_maintenance_enabled
from ai_brain.maintenance import jobs
from ai_brain.maintenance.guard import SchedulerContext
from ai_brain.maintenance.jobs import JobReport


logger = logging.getLogger("ai_brain.maintenance.scheduler")

# job id -> (runner, trigger, trigger kwargs); all cron times are UTC
JOB_TABLE: Dict[str, Tuple[Callable[[SchedulerContext], JobReport], str, Dict[str, Any]]] = {
    "user_model_maintenance": (jobs.run_user_model_maintenance, "cron", {"hour": 1, "minute": 0}),
    "memory_consolidation": (jobs.run_memory_consolidation, "cron", {"hour": 2, "minute": 0}),
    "memory_chains_maintenance": (jobs.run_memory_chains_maintenance, "cron", {"hour": 2, "minute": 30}),
    "emotional_continuity": (jobs.run_emotional_continuity, "cron", {"hour": 2, "minute": 45}),
    "personality_evolution": (jobs.run_personality_evolution, "cron", {"hour": 3, "minute": 0}),
    "personality_consolidation": (jobs.run_personality_consolidation, "cron", {"day_of_week": "sun", "hour": 4, "minute": 0}),
    "memory_chains_deep_cleanup": (jobs.run_memory_chains_deep_cleanup, "cron", {"day_of_week": "sun", "hour": 3, "minute": 30}),
    "user_model_deep_analysis": (jobs.run_user_model_deep_analysis, "cron", {"day_of_week": "sun", "hour": 2, "minute": 0}),
    "emotional_deep_analysis": (jobs.run_emotional_deep_analysis, "cron", {"day_of_week": "sun", "hour": 4, "minute": 30}),
    "turn_queue_drain": (jobs.run_turn_queue_drain, "interval", {"minutes": 1}),
}

_scheduler: Optional[BackgroundScheduler] = None


def run_job_now(ctx: SchedulerContext, job_id: str) -> JobReport:
    """Run one maintenance job synchronously; unknown ids raise KeyError."""
    try:
        runner = JOB_TABLE[job_id][0]
    except KeyError:
        raise KeyError(f"unknown maintenance job: {job_id}") from None
    logger.info("[maint.manual] job_id=%s", job_id)
    return runner(ctx)


def _safe_run(runner: Callable[[SchedulerContext], JobReport], ctx: SchedulerContext) -> None:
    # Runners never raise; this keeps a surprise from reaching the executor
    try:
        runner(ctx)
    except Exception:
        logger.exception("[sched.job_error] runner=%s", getattr(runner, "__name__", runner))


def build_scheduler(ctx: SchedulerContext) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    for job_id, (runner, trigger, trigger_args) in JOB_TABLE.items():
        scheduler.add_job(
            _safe_run,
            trigger,
            args=[runner, ctx],
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **trigger_args,
        )
    return scheduler


def start_scheduler(ctx: SchedulerContext) -> Optional[BackgroundScheduler]:
    global _scheduler
    try:
        if _scheduler is None and is_scheduled_maintenance_enabled():
            _scheduler = build_scheduler(ctx)
            _scheduler.start()
            logger.info("[sched] started APScheduler with %s maintenance jobs (UTC)", len(JOB_TABLE))
        elif _scheduler is None:
            logger.info("[sched] disabled via env; not starting scheduler")
    except Exception as exc:
        logger.error("[sched] failed to start: %s", exc)
        _scheduler = None
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        try:
            _scheduler.shutdown(wait=False)
        finally:
            _scheduler = None
        logger.info("[sched] stopped")
