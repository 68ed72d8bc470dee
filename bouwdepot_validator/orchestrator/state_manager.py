"""Validation result persistence (Redis or in-memory)"""

import json
import os
import threading
from typing import Dict, Any, Optional
import redis
from bouwdepot_validator.models.validation import ValidationContext
from bouwdepot_validator.utils.errors import StateManagerError
from bouwdepot_validator.utils.logging import get_logger
from bouwdepot_validator.utils.metrics import result_saves

logger = get_logger(__name__)

RESULT_TTL_SECONDS = 86400  # 24 hours


def _connect_redis() -> Optional[redis.Redis]:
    try:
        redis_host, redis_port = os.getenv("REDIS_HOST", "localhost:6379").split(':')
        client = redis.Redis(
            host=redis_host,
            port=int(redis_port),
            db=int(os.getenv("REDIS_DB", 0)),
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=5
        )
        client.ping()
        logger.info("Connected to Redis", host=redis_host, port=redis_port)
        return client
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Redis connection failed, falling back to in-memory: {e}")
        return None


class ValidationResultStore:
    """
    Keyed store of finished validation results.

    Uses Redis (24h TTL) when STATE_BACKEND=redis and the server is reachable,
    otherwise a process-local dictionary.
    """

    def __init__(self, backend: Optional[str] = None, redis_client: Optional[redis.Redis] = None):
        self.backend = backend or os.getenv("STATE_BACKEND", "memory")
        self._memory: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.redis_client = redis_client

        if self.backend == "redis" and self.redis_client is None:
            self.redis_client = _connect_redis()
        if self.redis_client is None:
            logger.info(f"Using in-memory result backend ({self.backend} mode)")

    @staticmethod
    def _key(validation_id: str) -> str:
        return f"validation:{validation_id}:result"

    def save_validation_result(self, validation_id: str, context: ValidationContext) -> None:
        """
        Save a validation result.

        Raises:
            StateManagerError: If the Redis write fails
        """
        payload = context.model_dump(mode="json")

        if self.redis_client is None:
            with self._lock:
                self._memory[validation_id] = payload
            result_saves.labels(status='success').inc()
            logger.info("Saved validation result (in-memory)", validation_id=validation_id)
            return

        try:
            self.redis_client.setex(self._key(validation_id), RESULT_TTL_SECONDS, json.dumps(payload, default=str))
            result_saves.labels(status='success').inc()
            logger.info("Saved validation result", validation_id=validation_id)
        except redis.RedisError as e:
            result_saves.labels(status='failure').inc()
            raise StateManagerError(f"Failed to save validation result: {e}")

    def get_validation_result(self, validation_id: str) -> Optional[ValidationContext]:
        """
        Load a validation result.

        Returns:
            The stored context, or None if not found
        """
        if self.redis_client is None:
            with self._lock:
                payload = self._memory.get(validation_id)
        else:
            try:
                value = self.redis_client.get(self._key(validation_id))
                payload = json.loads(value) if value else None
            except redis.RedisError as e:
                logger.error(f"Failed to load validation result: {e}")
                return None

        if payload is None:
            logger.warning(f"No saved result found for {validation_id}")
            return None
        return ValidationContext.model_validate(payload)

    def check_health(self) -> bool:
        if self.redis_client is None:
            return True
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False


_default_store: Optional[ValidationResultStore] = None


def get_result_store() -> ValidationResultStore:
    """Process-wide result store, created on first use"""
    global _default_store
    if _default_store is None:
        _default_store = ValidationResultStore()
    return _default_store
