from ai_brain.maintenance.guard import JobGuard, JobState, SchedulerContext
from ai_brain.maintenance.jobs import (
    JobReport,
    run_emotional_continuity,
    run_emotional_deep_analysis,
    run_memory_chains_deep_cleanup,
    run_memory_chains_maintenance,
    run_memory_consolidation,
    run_personality_consolidation,
    run_personality_evolution,
    run_turn_queue_drain,
    run_user_model_deep_analysis,
    run_user_model_maintenance,
)
from ai_brain.maintenance.scheduler import JOB_TABLE, run_job_now, start_scheduler, stop_scheduler

__all__ = [
    "JOB_TABLE",
    "JobGuard",
    "JobReport",
    "JobState",
    "SchedulerContext",
    "run_emotional_continuity",
    "run_emotional_deep_analysis",
    "run_job_now",
    "run_memory_chains_deep_cleanup",
    "run_memory_chains_maintenance",
    "run_memory_consolidation",
    "run_personality_consolidation",
    "run_personality_evolution",
    "run_turn_queue_drain",
    "run_user_model_deep_analysis",
    "run_user_model_maintenance",
    "start_scheduler",
    "stop_scheduler",
]
