"""
Maintenance jobs.

Each ``run_*`` function is one scheduled job: it takes the job's guard from
the context (skipping if a run is already in flight), works through the
users it applies to with per-user failure isolation, and returns a
``JobReport``. No run_* function raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from ai_brain.errors import PerUserProcessingError
from ai_brain.maintenance.guard import SchedulerContext
from ai_brain.services.turn_queue import drain


logger = logging.getLogger("ai_brain.maintenance")

ACTIVE_USER_WINDOW = timedelta(days=7)
CHAIN_REBUILD_MAX_CHAINS = 5
CHAIN_REBUILD_LOOKBACK_DAYS = 14
DEEP_ANALYSIS_MEMORIES = 20
DRAIN_BATCH = 100


@dataclass
class JobReport:
    job_id: str
    status: str = "ok"
    users_processed: int = 0
    failed_user_ids: List[str] = field(default_factory=list)
    duration_s: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    failures: List[PerUserProcessingError] = field(default_factory=list, repr=False)

    def add_counts(self, stats: Any) -> None:
        if not isinstance(stats, dict):
            return
        for key, value in stats.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                self.details[key] = self.details.get(key, 0) + value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("failures", None)
        return data


def for_each_user(report: JobReport, user_ids: Iterable[str], work: Callable[[str], Any]) -> None:
    """Run ``work`` per user; one user's failure is recorded and never stops the loop."""
    for user_id in user_ids:
        try:
            stats = work(user_id)
        except Exception as exc:
            failure = PerUserProcessingError(user_id, exc)
            report.failures.append(failure)
            report.failed_user_ids.append(user_id)
            logger.exception("[maint.%s.user_error] user_id=%s", report.job_id, user_id)
            continue
        report.users_processed += 1
        if isinstance(stats, dict):
            report.add_counts(stats)
        elif isinstance(stats, (int, float)) and not isinstance(stats, bool):
            report.add_counts({"count": stats})


def run_guarded(ctx: SchedulerContext, job_id: str, body: Callable[[JobReport], None]) -> JobReport:
    guard = ctx.guard(job_id)
    report = JobReport(job_id=job_id)
    if not guard.try_acquire():
        report.status = "skipped"
        logger.info("[maint.%s.skipped] already running", job_id)
        return report

    started = time.perf_counter()
    error: Optional[BaseException] = None
    logger.info("[maint.%s.start]", job_id)
    try:
        body(report)
        report.status = "partial" if report.failed_user_ids else "ok"
    except Exception as exc:
        error = exc
        report.status = "failed"
        report.error = str(exc)
        logger.exception("[maint.%s.failed]", job_id)
    finally:
        report.duration_s = round(time.perf_counter() - started, 3)
        guard.release(error)
    logger.info(
        "[maint.%s.done] status=%s users=%s failed=%s duration_s=%s details=%s",
        job_id,
        report.status,
        report.users_processed,
        report.failed_user_ids,
        report.duration_s,
        report.details,
    )
    return report


def _active_users(ctx: SchedulerContext) -> List[str]:
    return ctx.episodic.list_active_user_ids(ctx.now() - ACTIVE_USER_WINDOW)


def run_user_model_maintenance(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        now = ctx.now()
        for_each_user(report, _active_users(ctx), lambda uid: ctx.user_model.maintain_user(uid, now))
        report.add_counts(ctx.user_model.cleanup_user_model_data(now))

    return run_guarded(ctx, "user_model_maintenance", body)


def run_memory_consolidation(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        now = ctx.now()
        for_each_user(report, ctx.episodic.list_user_ids(), lambda uid: ctx.memory.consolidate_memories(uid, now))

    return run_guarded(ctx, "memory_consolidation", body)


def run_memory_chains_maintenance(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        now = ctx.now()
        report.add_counts(
            {
                "chains_deleted": ctx.chains.cleanup_weak_chains(now),
                "chains_decayed": ctx.chains.decay_chain_strengths(now),
            }
        )
        for_each_user(
            report,
            _active_users(ctx),
            lambda uid: {
                "chains_created": ctx.chains.build_memory_chains(
                    uid, CHAIN_REBUILD_MAX_CHAINS, CHAIN_REBUILD_LOOKBACK_DAYS, now
                )
            },
        )
        report.add_counts({"chains_extended": ctx.chains.extend_important_chains(now)})

    return run_guarded(ctx, "memory_chains_maintenance", body)


def run_personality_evolution(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        now = ctx.now()

        def evolve(uid: str) -> Dict[str, int]:
            updated = ctx.personality.update_personality(uid, now)
            return {"users_evolved": 1 if updated else 0}

        for_each_user(report, ctx.episodic.list_user_ids(), evolve)

    return run_guarded(ctx, "personality_evolution", body)


def run_personality_consolidation(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        now = ctx.now()
        for_each_user(
            report,
            ctx.episodic.list_user_ids(),
            lambda uid: {"traits_consolidated": len(ctx.personality.consolidate_personality(uid, now))},
        )

    return run_guarded(ctx, "personality_consolidation", body)


def run_memory_chains_deep_cleanup(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        report.add_counts({"chains_deleted": ctx.chains.deep_cleanup(ctx.now())})

    return run_guarded(ctx, "memory_chains_deep_cleanup", body)


def run_user_model_deep_analysis(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        for_each_user(
            report,
            _active_users(ctx),
            lambda uid: {"mental_states_inferred": 1 if ctx.user_model.infer_mental_state(uid, DEEP_ANALYSIS_MEMORIES) else 0},
        )

    return run_guarded(ctx, "user_model_deep_analysis", body)


def run_emotional_continuity(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        if ctx.emotions is None:
            return
        now = ctx.now()
        for_each_user(report, _active_users(ctx), lambda uid: ctx.emotions.maintain_user(uid, now))
        report.add_counts({"emotions_pruned": ctx.emotions.prune_timeline(now)})

    return run_guarded(ctx, "emotional_continuity", body)


def run_emotional_deep_analysis(ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        if ctx.emotions is None:
            return
        now = ctx.now()
        for_each_user(report, ctx.episodic.list_user_ids(), lambda uid: ctx.emotions.deep_analyze_user(uid, now))

    return run_guarded(ctx, "emotional_deep_analysis", body)


def run_turn_queue_drain(
ctx: SchedulerContext) -> JobReport:
    def body(report: JobReport) -> None:
        if ctx.turn_queue is None or ctx.turn_processor is None:
            return
        report.add_counts({"turns_processed": drain(ctx.turn_queue, ctx.turn_processor, DRAIN_BATCH)})

    return run_guarded(ctx, "turn_queue_drain", body)
