"""
CARTOPS - Persistence collaborators
"""

import logging
from functools import lru_cache

from cartops.core.config import settings
from cartops.services.persistence.memory import InMemoryCartRepository
from cartops.services.persistence.repository import CartRepository

logger = logging.getLogger(__name__)


@lru_cache()
def get_repository() -> CartRepository:
    """Repository selected by PERSISTENCE_BACKEND."""
    if settings.PERSISTENCE_BACKEND == "memory":
        logger.info("Using in-memory cart repository")
        return InMemoryCartRepository()

    from cartops.services.persistence.firestore import FirestoreCartRepository
    return FirestoreCartRepository()


__all__ = [
    "CartRepository",
    "InMemoryCartRepository",
    "get_repository",
]
