from typing import Optional
import logging

from langfuse import Langfuse

from ai_brain.config import (
    get_langfuse_host,
    get_langfuse_public_key,
    get_langfuse_secret_key,
    is_langfuse_enabled,
)


logger = logging.getLogger("ai_brain.dependencies.langfuse")

_client: Optional[Langfuse] = None


def get_langfuse_client() -> Optional[Langfuse]:
    """Shared Langfuse client, or None when tracing keys are not configured."""
    global _client
    if not is_langfuse_enabled():
        return None
    if _client is None:
        try:
            _client = Langfuse(
                public_key=get_langfuse_public_key(),
                secret_key=get_langfuse_secret_key(),
                host=get_langfuse_host(),
                flush_at=10,
                flush_interval=1.0,
            )
            logger.info("[langfuse] client ready host=%s", get_langfuse_host())
        except Exception as exc:
            logger.warning("[langfuse] client unavailable: %s", exc)
            return None
    return _client


def flush_langfuse() -> None:
    """Send buffered traces; called on application shutdown."""
    if _client is None:
        return
    try:
        _client.flush()
    except Exception as exc:
        logger.warning("[langfuse] flush failed: %s", exc)
