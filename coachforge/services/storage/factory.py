"""Storage provider factories."""
from __future__ import annotations

import logging
from functools import lru_cache

from coachforge.core.config import settings
from coachforge.services.storage.base import ObjectStore, VectorIndex
from coachforge.services.storage.filesystem_object_store import FilesystemObjectStore
from coachforge.services.storage.noop_vector_index import NoopVectorIndex

logger = logging.getLogger(__name__)


@lru_cache
def get_object_store() -> ObjectStore:
    return FilesystemObjectStore(settings.object_store_dir)


@lru_cache
def get_vector_index() -> VectorIndex:
    provider = settings.vector_provider.lower()
    if provider != "noop":
        logger.warning("Vector provider %r is not available; falling back to noop", settings.vector_provider)
    return NoopVectorIndex()
