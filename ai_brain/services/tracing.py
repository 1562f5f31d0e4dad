"""
Tracing utilities for Langfuse integration.

Provides request-scoped trace context using contextvars so that oracle calls
made while handling a turn or a maintenance pass are attached to one trace.
"""
import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

from ai_brain.dependencies.langfuse_client import get_langfuse_client

logger = logging.getLogger("ai_brain.tracing")

_current_trace: ContextVar[Optional[Any]] = ContextVar("current_trace", default=None)


def start_trace(name: str, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[Any]:
	"""Start a new trace for a turn or a maintenance unit.

	Returns:
		Trace object if Langfuse is enabled, None otherwise.
	"""
	client = get_langfuse_client()
	if not client:
		return None

	try:
		trace = client.trace(name=name, user_id=user_id, metadata=metadata or {})
		_current_trace.set(trace)
		logger.debug("[tracing] Started trace: name=%s user_id=%s", name, user_id)
		return trace
	except Exception as e:
		logger.error("[tracing] Failed to start trace: %s", e, exc_info=True)
		return None


def get_current_trace() -> Optional[Any]:
	return _current_trace.get()


def end_trace() -> None:
	_current_trace.set(None)


def start_generation(name: str, model: str, input: Any, metadata: Optional[Dict[str, Any]] = None) -> Optional[Any]:
	"""Open a generation record under the current trace, if any."""
	trace = get_current_trace()
	if not trace:
		return None
	try:
		return trace.generation(name=name, model=model, input=input, metadata=metadata or {})
	except Exception:
		logger.debug("[tracing] generation start failed", exc_info=True)
		return None


def end_generation(generation: Optional[Any], output: Any) -> None:
	if generation is None:
		return
	try:
		generation.end(output=output)
	except Exception:
		logger.debug("[tracing] generation end failed", exc_info=True)


def trace_error(exception: Exception, metadata: Optional[Dict[str, Any]] = None) -> None:
	"""Record an error event in the current trace.

	Args:
		exception: The exception that occurred
		metadata: Additional context about the error
	"""
	trace = get_current_trace()
	if not trace:
		return

	try:
		trace.event(
			name="error",
			input={
				"exception_type": type(exception).__name__,
				"message": str(exception)
			},
			metadata=metadata or {},
			level="ERROR"
		)
	except Exception as e:
		logger.warning("Failed to record error event: %s", e)
