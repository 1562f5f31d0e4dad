"""Embedding and text-understanding oracles.

Both oracles wrap an OpenAI-compatible client (OpenAI or xAI, selected by
``LLM_PROVIDER``) and never raise to their callers: every call returns an
:class:`OracleResult` tagged OK, DEGRADED (the call worked but the answer had
to be repaired or defaulted) or FAILED (not configured, timed out, or the
provider raised after all retries).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from ai_brain.config import (
    get_analysis_model_name,
    get_embedding_model_name,
    get_llm_provider,
    get_openai_api_key,
    get_oracle_retries,
    get_oracle_timeout_seconds,
    get_xai_api_key,
    get_xai_base_url,
    is_langfuse_enabled,
)
from ai_brain.errors import MalformedOracleResponse, OracleUnavailable
from ai_brain.models import NEUTRAL_EMOTIONS
from ai_brain.services.prompts import EMOTION_PROMPT
from ai_brain.services.tracing import end_generation, start_generation, trace_error


logger = logging.getLogger("ai_brain.oracles")

T = TypeVar("T")


class OracleStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class OracleResult(Generic[T]):
    status: OracleStatus
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OracleStatus.OK

    @property
    def usable(self) -> bool:
        """True when ``value`` can be consumed (OK or DEGRADED)."""
        return self.status is not OracleStatus.FAILED and self.value is not None

    @classmethod
    def success(cls, value: T) -> "OracleResult[T]":
        return cls(OracleStatus.OK, value)

    @classmethod
    def degraded(cls, value: T, error: str) -> "OracleResult[T]":
        return cls(OracleStatus.DEGRADED, value, error)

    @classmethod
    def failed(cls, error: str) -> "OracleResult[T]":
        return cls(OracleStatus.FAILED, None, error)


def _parse_json_from_text(text: str, expect_array: bool) -> Any:
    """Best-effort parse of JSON from LLM text.

    Handles code fences (```json ... ```), leading/trailing prose, and extracts
    the first complete JSON object/array if needed. Raises
    MalformedOracleResponse when nothing usable can be recovered.
    """
    if not text or text.strip() == "":
        raise MalformedOracleResponse("empty response")

    candidate = text.strip()

    # 1) Strip code fences if present
    code_block = re.search(r"```(?:json)?\s*([\s\S]+?)```", candidate, re.IGNORECASE)
    if code_block:
        candidate = code_block.group(1).strip()

    # 2) Try direct parse, coercing to the expected container shape
    try:
        parsed = json.loads(candidate)
        if not expect_array:
            return parsed
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            for key in ("items", "beliefs", "goals"):
                if isinstance(parsed.get(key), list):
                    return parsed[key]
            return [parsed] if parsed else []
        raise MalformedOracleResponse(f"expected array, got {type(parsed).__name__}")
    except json.JSONDecodeError:
        pass

    # 3) Extract bracketed JSON region (array preferred when expect_array)
    pairs = [("[", "]"), ("{", "}")] if expect_array else [("{", "}")]
    for open_ch, close_ch in pairs:
        start = candidate.find(open_ch)
        end = candidate.rfind(close_ch)
        if start == -1 or end <= start:
            continue
        try:
            parsed = json.loads(candidate[start : end + 1])
        except json.JSONDecodeError:
            continue
        if expect_array and not isinstance(parsed, list):
            return [parsed]
        return parsed

    raise MalformedOracleResponse(f"no JSON found in: {candidate[:200]}")


def _build_client() -> Optional[Any]:
    """Create an OpenAI-compatible client for the configured provider."""
    provider = get_llm_provider()
    if provider == "openai":
        api_key = (get_openai_api_key() or "").strip()
        base_url = None
    elif provider == "xai":
        api_key = (get_xai_api_key() or "").strip()
        base_url = get_xai_base_url()
    else:
        logger.error("[oracle.config] unknown LLM provider: %s", provider)
        return None
    if not api_key:
        return None

    # Use Langfuse OpenAI wrapper for auto-instrumentation if enabled
    if is_langfuse_enabled():
        from langfuse.openai import OpenAI  # type: ignore
    else:
        from openai import OpenAI  # type: ignore

    if base_url:
        return OpenAI(api_key=api_key, base_url=base_url)
    return OpenAI(api_key=api_key)


class _Oracle:
    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> None:
        self._client = client
        self._client_resolved = client is not None
        self.model = model
        self.timeout_s = timeout_s if timeout_s is not None else get_oracle_timeout_seconds()
        self.retries = max(0, retries if retries is not None else get_oracle_retries())

    @property
    def client(self) -> Optional[Any]:
        if not self._client_resolved:
            self._client = _build_client()
            self._client_resolved = True
        return self._client

    def _with_retries(self, name: str, call):
        """Run ``call`` up to ``retries + 1`` times; raise OracleUnavailable on exhaustion."""
        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                return call()
            except Exception as exc:  # retry
                last_exc = exc
                logger.warning("[oracle.%s.retry] attempt=%s error=%s", name, attempt + 1, exc)
        raise OracleUnavailable(str(last_exc)) from last_exc


class EmbeddingOracle(_Oracle):
    def __init__(self, client: Optional[Any] = None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.model = self.model or get_embedding_model_name()

    def embed(self, text: str) -> OracleResult[List[float]]:
        client = self.client
        if client is None:
            return OracleResult.failed("embedding oracle not configured")

        generation = start_generation(
            "embedding_generation", self.model, text[:200], metadata={"type": "embedding"}
        )
        try:
            resp = self._with_retries(
                "embed",
                lambda: client.embeddings.create(model=self.model, input=text, timeout=self.timeout_s),
            )
            vector = [float(x) for x in resp.data[0].embedding]
        except Exception as exc:
            logger.warning("[oracle.embed.failed] model=%s error=%s", self.model, exc)
            trace_error(exc, metadata={"model": self.model, "context": "embedding_generation"})
            return OracleResult.failed(str(exc))

        if not vector:
            return OracleResult.failed("empty embedding")
        end_generation(generation, {"dimension": len(vector)})
        return OracleResult.success(vector)


class TextOracle(_Oracle):
    def __init__(self, client: Optional[Any] = None, **kwargs: Any) -> None:
        super().__init__(client, **kwargs)
        self.model = self.model or get_analysis_model_name()

    def analyze(self, system_prompt: str, payload: Any, expect_array: bool = False) -> OracleResult[Any]:
        """Send ``payload`` under ``system_prompt`` and parse the JSON answer."""
        client = self.client
        if client is None:
            return OracleResult.failed("text oracle not configured")

        content = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        generation = start_generation("text_analysis", self.model, content[:1000])
        try:
            resp = self._with_retries(
                "analyze",
                lambda: client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": content},
                    ],
                    response_format=None if expect_array else {"type": "json_object"},
                    timeout=self.timeout_s,
                ),
            )
            text = resp.choices[0].message.content or ""
        except Exception as exc:
            logger.warning("[oracle.analyze.failed] model=%s error=%s", self.model, exc)
            trace_error(exc, metadata={"model": self.model, "expect_array": expect_array})
            return OracleResult.failed(str(exc))

        end_generation(generation, text[:1000])
        logger.debug("[oracle.analyze.ok] model=%s expect_array=%s output=%s", self.model, expect_array, text[:500])
        try:
            return OracleResult.success(_parse_json_from_text(text, expect_array))
        except MalformedOracleResponse as exc:
            logger.warning("[oracle.analyze.malformed] %s", exc)
            return OracleResult.degraded([] if expect_array else {}, str(exc))


def neutral_emotions() -> Dict[str, float]:
    return dict(NEUTRAL_EMOTIONS)


def coerce_emotions(raw: Any) -> Optional[Dict[str, float]]:
    """Clamp a parsed emotion map onto the fixed vocabulary; None if unusable."""
    if not isinstance(raw, dict):
        return None
    out = neutral_emotions()
    seen = False
    for name in out:
        if name not in raw:
            continue
        try:
            out[name] = min(1.0, max(0.0, float(raw[name])))
            seen = True
        except (TypeError, ValueError):
            return None
    return out if seen else None


def analyze_emotion(oracle: Optional[TextOracle], text: str) -> OracleResult[Dict[str, float]]:
    """Emotion map for ``text``; the neutral all-zero map whenever the oracle cannot answer."""
    if oracle is None:
        return OracleResult.degraded(neutral_emotions(), "no text oracle")
    result = oracle.analyze(EMOTION_PROMPT, text)
    if result.ok:
        emotions = coerce_emotions(result.value)
        if emotions is not None:
            return OracleResult.success(emotions)
        return OracleResult.degraded(neutral_emotions(), "malformed emotion map")
    return OracleResult.degraded(neutral_emotions(), result.error or "emotion analysis unavailable")
