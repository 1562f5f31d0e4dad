from datetime import datetime, timezone
import logging
import time as _time
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ai_brain.config import (
	get_env_value,
	get_llm_provider,
	is_llm_configured,
	is_turn_worker_enabled,
)
from ai_brain.dependencies.langfuse_client import flush_langfuse
from ai_brain.dependencies.postgres import close_postgres_pool, get_postgres_pool, ping_postgres
from ai_brain.dependencies.redis_client import close_redis_client, ping_redis
from ai_brain.errors import InvalidRecordError, StoreUnavailable
from ai_brain.maintenance import JOB_TABLE, SchedulerContext, run_job_now, start_scheduler, stop_scheduler
from ai_brain.models import Memory, MemoryChain
from ai_brain.schemas import (
	ChainDetailResponse,
	ChainItem,
	GoalProgressRequest,
	JobReportItem,
	MaintenanceRequest,
	MaintenanceResponse,
	MemoryItem,
	MemoryStatsResponse,
	PersonalityResponse,
	PinRequest,
	RetrieveResponse,
	TurnRequest,
	TurnResponse,
)
from ai_brain.services.emotional_continuity import EmotionalContinuityService
from ai_brain.services.memory_chains import MemoryChainService
from ai_brain.services.memory_service import MemoryService
from ai_brain.services.oracles import EmbeddingOracle, TextOracle
from ai_brain.services.personality import PersonalityService
from ai_brain.services.tracing import end_trace, start_trace
from ai_brain.services.turn_queue import TurnEvent, TurnProcessor, TurnQueue, TurnWorker
from ai_brain.services.user_model import UserModelService, generate_user_model_context
from ai_brain.storage.postgres import (
	PostgresChainStore,
	PostgresEmotionStore,
	PostgresEpisodicStore,
	PostgresPersonalityStore,
	PostgresUserModelStore,
)


app = FastAPI(title="AI Brain Memory Core", version="0.1.0")

logger = logging.getLogger("ai_brain.api")
if not logger.handlers:
	_handler = logging.StreamHandler()
	_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
	logger.addHandler(_handler)
_level = getattr(logging, (get_env_value("LOG_LEVEL", "INFO") or "INFO").upper(), logging.INFO)
logger.setLevel(_level)
logger.propagate = False

# Root logger fallback (so module loggers without handlers still emit)
_root = logging.getLogger()
if not _root.handlers:
	_root_handler = logging.StreamHandler()
	_root_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
	_root.addHandler(_root_handler)
	_root.setLevel(_level)


_context: Optional[SchedulerContext] = None
_worker: Optional[TurnWorker] = None


def build_context() -> SchedulerContext:
	"""Wire the Postgres stores, the oracles and the engines into one context."""
	pool = get_postgres_pool()
	episodic = PostgresEpisodicStore(pool)
	text_oracle = TextOracle()
	chains = MemoryChainService(episodic, PostgresChainStore(pool), text_oracle)
	personality = PersonalityService(episodic, PostgresPersonalityStore(pool))
	user_model = UserModelService(episodic, PostgresUserModelStore(pool), text_oracle)
	emotions = EmotionalContinuityService(PostgresEmotionStore(pool), text_oracle)
	return SchedulerContext(
		episodic=episodic,
		memory=MemoryService(episodic, EmbeddingOracle(), text_oracle),
		chains=chains,
		personality=personality,
		user_model=user_model,
		emotions=emotions,
		turn_queue=TurnQueue(),
		turn_processor=TurnProcessor(chains=chains, personality=personality, user_model=user_model),
	)


def get_context() -> SchedulerContext:
	global _context
	if _context is None:
		_context = build_context()
	return _context


@app.on_event("startup")
def _on_startup() -> None:
	global _worker
	ctx = get_context()
	initialize_schema = getattr(ctx.episodic, "initialize_schema", None)
	if initialize_schema is not None:
		try:
			initialize_schema()
		except StoreUnavailable as exc:
			logger.error("[startup] schema initialization failed: %s", exc)
	start_scheduler(ctx)
	if is_turn_worker_enabled() and _worker is None:
		_worker = TurnWorker(ctx.turn_queue, ctx.turn_processor)
		_worker.start()


@app.on_event("shutdown")
def _on_shutdown() -> None:
	global _worker
	stop_scheduler()
	if _worker is not None:
		_worker.stop()
		_worker = None
	close_postgres_pool()
	close_redis_client()
	flush_langfuse()


@app.middleware("http")
async def _log_requests(request: Request, call_next):
	start = _time.perf_counter()
	try:
		response = await call_next(request)
	except Exception as exc:  # pragma: no cover
		elapsed_ms = int((_time.perf_counter() - start) * 1000)
		logger.exception("[http] %s %s error=%s latency_ms=%s", request.method, request.url.path, exc.__class__.__name__, elapsed_ms)
		raise
	elapsed_ms = int((_time.perf_counter() - start) * 1000)
	logger.info("[http] %s %s status=%s latency_ms=%s", request.method, request.url.path, response.status_code, elapsed_ms)
	return response


@app.exception_handler(StoreUnavailable)
def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
	logger.error("[http.store_unavailable] %s %s: %s", request.method, request.url.path, exc)
	return JSONResponse(status_code=503, content={"detail": "store unavailable"})


@app.exception_handler(InvalidRecordError)
def _invalid_record(request: Request, exc: InvalidRecordError) -> JSONResponse:
	return JSONResponse(status_code=422, content={"detail": str(exc)})


def _memory_item(m: Memory) -> MemoryItem:
	return MemoryItem(
		memory_id=m.memory_id,
		user_text=m.user_text,
		ai_text=m.ai_text,
		persona_id=m.persona_id,
		importance_score=m.importance_score,
		emotional_context=m.emotional_context,
		access_count=m.access_count,
		last_accessed=m.last_accessed,
		pinned=m.pinned,
		created_at=m.created_at,
	)


def _chain_item(c: MemoryChain) -> ChainItem:
	return ChainItem(
		chain_id=c.chain_id,
		chain_name=c.chain_name,
		chain_type=c.chain_type,
		chain_strength=c.chain_strength,
		chain_summary=c.chain_summary or "",
		topics_covered=list(c.topics_covered),
		memory_count=len(c.memory_sequence),
		access_count=c.access_count,
		created_at=c.created_at,
	)


@app.get("/health")
def health() -> dict:
	return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/health/full")
def health_full(ctx: SchedulerContext = Depends(get_context)) -> dict:
	checks = {}

	provider = get_llm_provider()
	required_envs = ["OPENAI_API_KEY"] if provider == "openai" else (["XAI_API_KEY"] if provider == "xai" else [])
	missing_envs = [] if is_llm_configured() else required_envs
	checks["env"] = {"required": required_envs, "missing": missing_envs, "provider": provider}

	pg_ok, pg_error = ping_postgres()
	checks["postgres"] = {"ok": pg_ok, "error": pg_error}

	redis_ok, redis_error = ping_redis()
	checks["redis"] = {"ok": redis_ok, "error": redis_error}

	checks["jobs"] = [ctx.guard(job_id).snapshot() for job_id in JOB_TABLE]
	checks["turn_queue"] = {"backend": ctx.turn_queue.backend, "pending": len(ctx.turn_queue)} if ctx.turn_queue is not None else None

	# LLM oracles degrade gracefully, so a missing key does not make the service unhealthy
	overall_ok = pg_ok and (redis_ok is None or redis_ok)
	return {
		"status": "ok" if overall_ok else "degraded",
		"time": datetime.now(timezone.utc).isoformat(),
		"checks": checks,
	}


@app.post("/v1/turns", response_model=TurnResponse)
def ingest_turn(body: TurnRequest, ctx: SchedulerContext = Depends(get_context)) -> TurnResponse:
	start_trace("store_turn", body.user_id, metadata={"persona_id": body.persona_id})
	try:
		memory_id = ctx.memory.store_memory(body.user_id, body.user_text, body.ai_text, body.persona_id)
	finally:
		end_trace()
	if ctx.turn_queue is None:
		return TurnResponse(memory_id=memory_id, side_effects="disabled")
	ctx.turn_queue.enqueue(
		TurnEvent(user_id=body.user_id, memory_id=memory_id, user_text=body.user_text, ai_text=body.ai_text)
	)
	return TurnResponse(memory_id=memory_id)


@app.get("/v1/memories/retrieve", response_model=RetrieveResponse)
def retrieve(
	user_id: str = Query(...),
	query: str = Query(default=""),
	limit: int = Query(default=10, ge=1, le=100),
	persona_id: Optional[str] = Query(default=None),
	ctx: SchedulerContext = Depends(get_context),
) -> RetrieveResponse:
	memories = ctx.memory.retrieve_relevant_memories(user_id, query, limit=limit, persona_id=persona_id)
	return RetrieveResponse(user_id=user_id, results=[_memory_item(m) for m in memories])


@app.get("/v1/memories", response_model=List[MemoryItem])
def list_memories(
	user_id: str = Query(...),
	limit: int = Query(default=20, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	ctx: SchedulerContext = Depends(get_context),
) -> List[MemoryItem]:
	return [_memory_item(m) for m in ctx.memory.list_memories(user_id, limit=limit, offset=offset)]


@app.get("/v1/memories/stats", response_model=MemoryStatsResponse)
def memory_stats(user_id: str = Query(...), ctx: SchedulerContext = Depends(get_context)) -> MemoryStatsResponse:
	stats = ctx.memory.get_memory_stats(user_id)
	return MemoryStatsResponse(
		total_memories=stats.total_memories,
		avg_importance=stats.avg_importance,
		last_memory=stats.last_memory,
		total_accesses=stats.total_accesses,
		pinned_memories=stats.pinned_memories,
	)


@app.post("/v1/memories/{memory_id}/pin")
def pin_memory(memory_id: str, body: PinRequest, ctx: SchedulerContext = Depends(get_context)) -> dict:
	if not ctx.memory.set_pinned(body.user_id, memory_id, body.pinned):
		raise HTTPException(status_code=404, detail="memory not found")
	return {"memory_id": memory_id, "pinned": body.pinned}


@app.delete("/v1/memories/{memory_id}")
def delete_memory(memory_id: str, user_id: str = Query(...), ctx: SchedulerContext = Depends(get_context)) -> dict:
	if not ctx.memory.delete_memory(user_id, memory_id):
		raise HTTPException(status_code=404, detail="memory not found")
	return {"memory_id": memory_id, "deleted": True}


@app.get("/v1/chains", response_model=List[ChainItem])
def list_chains(
	user_id: str = Query(...),
	query: Optional[str] = Query(default=None),
	limit: int = Query(default=5, ge=1, le=50),
	ctx: SchedulerContext = Depends(get_context),
) -> List[ChainItem]:
	return [_chain_item(c) for c in ctx.chains.find_relevant_chains(user_id, query, limit)]


@app.get("/v1/chains/{chain_id}", response_model=ChainDetailResponse)
def chain_detail(chain_id: str, user_id: str = Query(...), ctx: SchedulerContext = Depends(get_context)) -> ChainDetailResponse:
	detail = ctx.chains.get_chain_memories(user_id, chain_id)
	if detail is None:
		raise HTTPException(status_code=404, detail="chain not found")
	detail["memories"] = [_memory_item(m) for m in detail["memories"]]
	return ChainDetailResponse(**detail)


@app.get("/v1/narrative")
def narrative(
	user_id: str = Query(...),
	topic: Optional[str] = Query(default=None),
	ctx: SchedulerContext = Depends(get_context),
) -> dict:
	result = ctx.chains.get_narrative_understanding(user_id, topic)
	if result is None:
		return {"topic": topic or "General", "chains_analyzed": 0, "narrative": None}
	result["key_chains"] = [_chain_item(c).model_dump(mode="json") for c in result["key_chains"]]
	return result


@app.get("/v1/personality", response_model=PersonalityResponse)
def personality(user_id: str = Query(...), ctx: SchedulerContext = Depends(get_context)) -> PersonalityResponse:
	return PersonalityResponse(user_id=user_id, traits=ctx.personality.get_personality(user_id))


@app.get("/v1/personality/history")
def personality_history(
	user_id: str = Query(...),
	trait: Optional[str] = Query(default=None),
	ctx: SchedulerContext = Depends(get_context),
) -> dict:
	traits = ctx.personality.get_personality_history(user_id, trait)
	return {
		"user_id": user_id,
		"traits": [
			{
				"trait_name": t.trait_name,
				"current_value": t.current_value,
				"historical_values": t.historical_values,
				"last_modified": t.last_modified.isoformat() if t.last_modified else None,
				"consolidation_count": t.consolidation_count,
			}
			for t in traits
		],
	}


@app.post("/v1/personality/reset", response_model=PersonalityResponse)
def personality_reset(user_id: str = Query(...), ctx: SchedulerContext = Depends(get_context)) -> PersonalityResponse:
	return PersonalityResponse(user_id=user_id, traits=ctx.personality.reset_personality(user_id))


@app.get("/v1/user-model")
def user_model(
	user_id: str = Query(...),
	include_context: bool = Query(default=False),
	ctx: SchedulerContext = Depends(get_context),
) -> dict:
	model = ctx.user_model.get_user_model(user_id)
	if include_context:
		model["context"] = generate_user_model_context(model)
	return model


@app.get("/v1/emotions")
def emotions(
	user_id: str = Query(...),
	days: int = Query(default=30, ge=1, le=365),
	include_context: bool = Query(default=False),
	ctx: SchedulerContext = Depends(get_context),
) -> dict:
	if ctx.emotions is None:
		raise HTTPException(status_code=503, detail="emotional continuity disabled")
	result = {
		"user_id": user_id,
		"trends": ctx.emotions.get_emotional_trends(user_id, days, now=ctx.now()),
		"patterns": [
			{
				"emotion_type": p.emotion_type,
				"frequency_count": p.frequency_count,
				"avg_intensity": p.avg_intensity,
				"trigger_patterns": p.trigger_patterns,
				"empathy_strategies": p.empathy_strategies,
				"confidence_score": p.confidence_score,
				"last_observed": p.last_observed.isoformat(),
			}
			for p in ctx.emotions.get_emotional_patterns(user_id)
		],
	}
	if include_context:
		result["context"] = ctx.emotions.generate_emotional_context(user_id, ctx.now())
	return result


@app.post("/v1/goals/{goal_id}/progress")
def goal_progress(goal_id: str, body: GoalProgressRequest, ctx: SchedulerContext = Depends(get_context)) -> dict:
	if not ctx.user_model.update_goal_progress(body.user_id, goal_id, body.progress, body.status):
		raise HTTPException(status_code=404, detail="goal not found")
	return {"goal_id": goal_id, "progress": body.progress, "status": body.status}


@app.post("/v1/maintenance", response_model=MaintenanceResponse)
def maintenance(body: MaintenanceRequest, ctx: SchedulerContext = Depends(get_context)) -> MaintenanceResponse:
	jobs = body.jobs or list(JOB_TABLE)
	reports = [JobReportItem(**run_job_now(ctx, job_id).to_dict()) for job_id in jobs]
	return MaintenanceResponse(reports=reports)
