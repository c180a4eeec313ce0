"""
Orb persistence.

``OrbStore`` is the interface the engine depends on; ``InMemoryOrbStore`` is
a thread-safe key-value implementation with last-write-wins semantics.
Hosts with a real database implement the same protocol and pass their store
to the services explicitly.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from .models import AdOrb, StoreState, utcnow

logger = logging.getLogger(__name__)


def orb_has_results(orb: AdOrb) -> bool:
    """True when the orb is marked as having results and carries a success score."""
    return bool(
        orb.metadata.has_results
        and orb.results is not None
        and orb.results.success_score is not None
    )


class OrbStore(Protocol):
    """CRUD + query interface for AdOrbs."""

    def save(self, orb: AdOrb) -> None: ...

    def save_many(self, orbs: Iterable[AdOrb]) -> None: ...

    def get(self, orb_id: str) -> Optional[AdOrb]: ...

    def list(self, predicate: Optional[Callable[[AdOrb], bool]] = None) -> List[AdOrb]: ...

    def delete(self, orb_id: str) -> bool: ...

    def clear(self) -> None: ...

    def list_with_results(self) -> List[AdOrb]: ...

    def list_with_embeddings(self) -> List[AdOrb]: ...

    def list_needing_embeddings(self) -> List[AdOrb]: ...

    def by_platform(self, platform: str) -> List[AdOrb]: ...

    def by_date_range(self, start: datetime, end: datetime) -> List[AdOrb]: ...

    def by_min_success_score(self, min_score: float) -> List[AdOrb]: ...

    def update_embedding(
        self, orb_id: str, embedding: List[float], canonical_text: Optional[str] = None
    ) -> bool: ...

    def state(self) -> StoreState: ...


class InMemoryOrbStore:
    """Dict-backed OrbStore guarded by a lock. Saves are idempotent."""

    def __init__(self, orbs: Optional[Iterable[AdOrb]] = None):
        self._lock = threading.Lock()
        self._orbs: Dict[str, AdOrb] = {}
        self._embedding_generated_at: Dict[str, datetime] = {}
        self._last_updated: Optional[datetime] = None
        if orbs:
            self.save_many(orbs)

    # =========================================================================
    # CRUD
    # =========================================================================

    def save(self, orb: AdOrb) -> None:
        with self._lock:
            self._put(orb)

    def save_many(self, orbs: Iterable[AdOrb]) -> None:
        with self._lock:
            for orb in orbs:
                self._put(orb)

    def _put(self, orb: AdOrb) -> None:
        # Stored copies are isolated from later caller mutation
        self._orbs[orb.id] = orb.model_copy(deep=True)
        if orb.embedding:
            self._embedding_generated_at[orb.id] = utcnow()
        self._last_updated = utcnow()

    def get(self, orb_id: str) -> Optional[AdOrb]:
        with self._lock:
            orb = self._orbs.get(orb_id)
            return orb.model_copy(deep=True) if orb else None

    def list(self, predicate: Optional[Callable[[AdOrb], bool]] = None) -> List[AdOrb]:
        with self._lock:
            orbs = [o.model_copy(deep=True) for o in self._orbs.values()]
        if predicate is None:
            return orbs
        return [o for o in orbs if predicate(o)]

    def delete(self, orb_id: str) -> bool:
        with self._lock:
            existed = self._orbs.pop(orb_id, None) is not None
            self._embedding_generated_at.pop(orb_id, None)
            if existed:
                self._last_updated = utcnow()
            return existed

    def clear(self) -> None:
        with self._lock:
            self._orbs.clear()
            self._embedding_generated_at.clear()
            self._last_updated = utcnow()
        logger.info("Orb store cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._orbs)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_with_results(self) -> List[AdOrb]:
        return self.list(orb_has_results)

    def list_with_embeddings(self) -> List[AdOrb]:
        return self.list(lambda o: bool(o.embedding))

    def list_needing_embeddings(self) -> List[AdOrb]:
        return self.list(lambda o: not o.embedding)

    def by_platform(self, platform: str) -> List[AdOrb]:
        platform = platform.lower()
        return self.list(
            lambda o: (o.metadata.platform or "").lower() == platform
        )

    def by_date_range(self, start: datetime, end: datetime) -> List[AdOrb]:
        return self.list(lambda o: start <= o.metadata.created_at <= end)

    def by_min_success_score(self, min_score: float) -> List[AdOrb]:
        return self.list(
            lambda o: orb_has_results(o) and o.results.success_score >= min_score
        )

    def update_embedding(
        self, orb_id: str, embedding: List[float], canonical_text: Optional[str] = None
    ) -> bool:
        with self._lock:
            orb = self._orbs.get(orb_id)
            if orb is None:
                return False
            update = {"embedding": list(embedding)}
            if canonical_text is not None:
                update["canonical_text"] = canonical_text
            self._orbs[orb_id] = orb.model_copy(update=update)
            self._embedding_generated_at[orb_id] = utcnow()
            self._last_updated = utcnow()
            return True

    def has_embedding(self, orb_id: str) -> bool:
        with self._lock:
            orb = self._orbs.get(orb_id)
            return bool(orb and orb.embedding)

    def state(self) -> StoreState:
        with self._lock:
            orbs = list(self._orbs.values())
            last_updated = self._last_updated
        return StoreState(
            total_orbs=len(orbs),
            orbs_with_embeddings=sum(1 for o in orbs if o.embedding),
            orbs_with_results=sum(1 for o in orbs if orb_has_results(o)),
            last_updated=last_updated,
        )
