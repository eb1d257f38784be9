"""Cache invalidation adapters"""
import logging
from typing import List

from domain.enums import ResourceKind
from domain.ports import CacheInvalidator

logger = logging.getLogger(__name__)


class InMemoryCacheInvalidator(CacheInvalidator):
    """Records invalidated tags; stands in for whatever cache fronts the API"""

    def __init__(self):
        self.tags: List[str] = []

    def invalidate(self, kind: ResourceKind, identifier: str) -> None:
        tag = f"{kind.value}-{identifier}"
        self.tags.append(tag)
        logger.debug("Invalidated cache tag %s", tag)

    def clear(self) -> None:
        self.tags.clear()
