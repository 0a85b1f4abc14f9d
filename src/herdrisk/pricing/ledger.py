# src/herdrisk/pricing/ledger.py
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from herdrisk.domain.entities import Quote


class QuoteLedger:
    """
    Append-only quote history per animal.

    A new quote supersedes the previous one; nothing is edited or removed.
    """

    def __init__(self) -> None:
        self._by_animal: Dict[str, List[Quote]] = {}
        self._lock = threading.Lock()

    def issue(self, pricer: Callable[..., Quote], animal_id: str, *args: Any, **kwargs: Any) -> Quote:
        """Call a pricer (e.g. pricing.quote.price) with supersedes wired to the latest quote."""
        with self._lock:
            prev = self._latest_unlocked(animal_id)
            q = pricer(animal_id, *args, supersedes=prev.quote_id if prev else None, **kwargs)
            if q.animal_id != animal_id:
                raise ValueError(f"Pricer returned a quote for {q.animal_id!r}, expected {animal_id!r}")
            self._by_animal.setdefault(animal_id, []).append(q)
            return q

    def _latest_unlocked(self, animal_id: str) -> Optional[Quote]:
        hist = self._by_animal.get(animal_id)
        return hist[-1] if hist else None

    def latest(self, animal_id: str) -> Optional[Quote]:
        with self._lock:
            return self._latest_unlocked(animal_id)

    def history(self, animal_id: str) -> List[Quote]:
        with self._lock:
            return list(self._by_animal.get(animal_id, []))
