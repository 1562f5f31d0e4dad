from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


MaintenanceJob = Literal[
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
]


class TurnRequest(BaseModel):
	user_id: str = Field(min_length=1)
	user_text: str
	ai_text: str
	persona_id: Optional[str] = None


class TurnResponse(BaseModel):
	memory_id: str
	side_effects: Literal["queued", "disabled"] = "queued"


class MemoryItem(BaseModel):
	memory_id: str
	user_text: str
	ai_text: str
	persona_id: Optional[str] = None
	importance_score: float
	emotional_context: Optional[Dict[str, float]] = None
	access_count: int = 0
	last_accessed: Optional[datetime] = None
	pinned: bool = False
	created_at: datetime


class RetrieveResponse(BaseModel):
	user_id: str
	results: List[MemoryItem]


class MemoryStatsResponse(BaseModel):
	total_memories: int
	avg_importance: float
	last_memory: Optional[datetime] = None
	total_accesses: int
	pinned_memories: int


class PinRequest(BaseModel):
	user_id: str
	pinned: bool = True


class ChainItem(BaseModel):
	chain_id: str
	chain_name: str
	chain_type: str
	chain_strength: float
	chain_summary: str = ""
	topics_covered: List[str] = Field(default_factory=list)
	memory_count: int
	access_count: int = 0
	created_at: datetime


class ChainDetailResponse(BaseModel):
	chain_id: str
	chain_name: str
	chain_type: str
	summary: str
	topics: List[str]
	emotional_arc: Dict[str, Any]
	strength: float
	memories: List[MemoryItem]


class PersonalityResponse(BaseModel):
	user_id: str
	traits: Dict[str, float]


class GoalProgressRequest(BaseModel):
	user_id: str
	progress: float = Field(ge=0, le=100)
	status: Optional[Literal["active", "completed", "abandoned"]] = None


class MaintenanceRequest(BaseModel):
	jobs: List[MaintenanceJob] = Field(default_factory=list)


class JobReportItem(BaseModel):
	job_id: str
	status: str
	users_processed: int = 0
	failed_user_ids: List[str] = Field(default_factory=list)
	duration_s: float = 0.0
	details: Dict[str, Any] = Field(default_factory=dict)
	error: Optional[str] = None


class MaintenanceResponse(BaseModel):
	reports: List[JobReportItem]
	started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
