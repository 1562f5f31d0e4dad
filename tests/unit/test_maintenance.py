from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ai_brain.errors import PerUserProcessingError
from ai_brain.maintenance import (
    JOB_TABLE,
    JobState,
    run_emotional_continuity,
    run_emotional_deep_analysis,
    run_job_now,
    run_memory_chains_maintenance,
    run_memory_consolidation,
    run_personality_evolution,
    run_turn_queue_drain,
    run_user_model_maintenance,
)
from ai_brain.maintenance import scheduler as scheduler_module
from ai_brain.maintenance.jobs import JobReport, for_each_user
from ai_brain.models import EmotionRecord
from ai_brain.services.turn_queue import TurnEvent
from tests.fixtures.oracle_stubs import StubTextOracle


def test_one_failing_user_does_not_stop_personality_evolution(context, store, now):
    for user_id in ("A", "B", "C"):
        store.add_memory(user_id, "haha lol", created_at=now - timedelta(hours=2))
    store.fail_users.add("B")

    report = run_personality_evolution(context)

    assert report.status == "partial"
    assert report.users_processed == 2
    assert report.failed_user_ids == ["B"]
    assert isinstance(report.failures[0], PerUserProcessingError)
    assert report.failures[0].user_id == "B"
    assert report.details["users_evolved"] == 2
    for user_id in ("A", "C"):
        assert store.traits[(user_id, "humor")].last_modified == now
    assert ("B", "humor") not in store.traits
    assert context.guard("personality_evolution").state is JobState.IDLE


def test_job_is_skipped_while_already_running(context):
    guard = context.guard("memory_consolidation")
    assert guard.try_acquire() is True

    report = run_memory_consolidation(context)

    assert report.status == "skipped"
    assert guard.running
    guard.release()
    assert run_memory_consolidation(context).status == "ok"


def test_guard_returns_to_idle_after_job_error(context):
    real_chains = context.chains
    context.chains = MagicMock()
    context.chains.cleanup_weak_chains.side_effect = RuntimeError("boom")

    report = run_memory_chains_maintenance(context)

    guard = context.guard("memory_chains_maintenance")
    assert report.status == "failed"
    assert report.error == "boom"
    assert guard.state is JobState.IDLE_AFTER_ERROR
    assert guard.snapshot()["last_error"] == "boom"

    context.chains = real_chains
    assert run_memory_chains_maintenance(context).status == "ok"
    assert guard.state is JobState.IDLE


def test_memory_consolidation_aggregates_counts(context, store, now):
    store.add_memory("A", "old", created_at=now - timedelta(days=40), importance=2.0)
    store.add_memory("B", "older", created_at=now - timedelta(days=200), importance=0.2)

    report = run_memory_consolidation(context)

    assert report.status == "ok"
    assert report.users_processed == 2
    assert report.details["decayed"] == 2
    assert report.details["deleted"] == 1


def test_user_model_maintenance_only_visits_active_users(context, store, now):
    store.add_memory("active", "hi", created_at=now - timedelta(days=1))
    store.add_memory("dormant", "hi", created_at=now - timedelta(days=30))
    context.user_model = MagicMock()
    context.user_model.maintain_user.return_value = {"turns_processed": 1}
    context.user_model.cleanup_user_model_data.return_value = {"mental_states_pruned": 3}

    report = run_user_model_maintenance(context)

    context.user_model.maintain_user.assert_called_once_with("active", now)
    assert report.details == {"turns_processed": 1, "mental_states_pruned": 3}


def test_chain_maintenance_builds_chains_for_active_users(context, store, now):
    for hours in (1, 2, 3):
        store.add_memory("u1", "work project", created_at=now - timedelta(hours=hours), embedding=[1.0, 0.0])

    report = run_memory_chains_maintenance(context)

    assert report.status == "ok"
    assert report.details["chains_created"] == 1
    assert len(store.chains) == 1


def test_turn_queue_drain_runs_side_effects(context, store):
    memory = store.add_memory("u1", "haha lol")
    context.turn_queue.enqueue(TurnEvent("u1", memory.memory_id, "haha lol", "ok"))

    report = run_turn_queue_drain(context)

    assert report.details == {"turns_processed": 1}
    assert len(context.turn_queue) == 0
    assert ("u1", "humor") in store.traits


def test_emotional_continuity_records_patterns_and_prunes(context, store, now):
    context.emotions.text_oracle = StubTextOracle(
        emotion_timeline={"emotions": [{"type": "joy", "intensity": 6, "triggers": ["promotion"]}]}
    )
    store.add_memory("u1", "I got the promotion!", created_at=now - timedelta(hours=2))
    store.add_memory("u2", "old chat", created_at=now - timedelta(days=30))
    store.insert_emotions([EmotionRecord("old", "u2", "sadness", 4.0, timestamp=now - timedelta(days=200))])

    report = run_emotional_continuity(context)

    assert report.status == "ok"
    assert report.users_processed == 1
    assert report.details == {
        "memories_analyzed": 1,
        "emotions_recorded": 1,
        "patterns_updated": 1,
        "emotions_pruned": 1,
    }
    assert store.patterns[("u1", "joy")].trigger_patterns == ["promotion"]
    assert "old" not in store.emotions


def test_emotional_jobs_isolate_failing_users(context, store, now):
    for user_id in ("ok", "down"):
        store.add_memory(user_id, "hello", created_at=now - timedelta(days=1))
        store.insert_emotions([EmotionRecord(f"e-{user_id}", user_id, "trust", 5.0, timestamp=now - timedelta(days=3))])
    store.fail_users.add("down")

    report = run_emotional_deep_analysis(context)

    assert report.status == "partial"
    assert report.failed_user_ids == ["down"]
    assert report.details == {"patterns_updated": 1, "emotion_types_90d": 1}
    assert ("ok", "trust") in store.patterns


def test_emotional_jobs_without_engine_are_no_ops(context):
    context.emotions = None

    assert run_emotional_continuity(context).status == "ok"
    assert run_emotional_deep_analysis(context).users_processed == 0


def test_run_job_now_rejects_unknown_jobs(context):
    with pytest.raises(KeyError):
        run_job_now(context, "defragment_everything")
    assert run_job_now(context, "memory_chains_deep_cleanup").status == "ok"


def test_for_each_user_accepts_scalar_results():
    report = JobReport(job_id="demo")

    for_each_user(report, ["a", "b"], lambda uid: 2)

    assert report.details == {"count": 4}
    assert "failures" not in report.to_dict()


def test_job_table_schedule():
    assert set(JOB_TABLE) == {
        "user_model_maintenance",
        "memory_consolidation",
        "memory_chains_maintenance",
        "emotional_continuity",
        "personality_evolution",
        "personality_consolidation",
        "memory_chains_deep_cleanup",
        "user_model_deep_analysis",
        "emotional_deep_analysis",
        "turn_queue_drain",
    }
    assert JOB_TABLE["memory_consolidation"][1:] == ("cron", {"hour": 2, "minute": 0})
    assert JOB_TABLE["personality_consolidation"][2]["day_of_week"] == "sun"
    assert JOB_TABLE["emotional_continuity"][1:] == ("cron", {"hour": 2, "minute": 45})
    assert JOB_TABLE["emotional_deep_analysis"][2]["day_of_week"] == "sun"


def test_build_scheduler_registers_every_job(context):
    scheduler = scheduler_module.build_scheduler(context)

    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == set(JOB_TABLE)
    assert isinstance(jobs["personality_evolution"].trigger, CronTrigger)
    assert isinstance(jobs["turn_queue_drain"].trigger, IntervalTrigger)
    assert all(job.max_instances == 1 and job.coalesce for job in jobs.values())


def test_start_scheduler_honours_disable_flag(context, monkeypatch):
    monkeypatch.setattr(scheduler_module, "is_scheduled_maintenance_enabled", lambda: False)
    monkeypatch.setattr(scheduler_module, "_scheduler", None)

    assert scheduler_module.start_scheduler(context) is None
