"""
Event Store Module

In-memory, append-only ledger event logs keyed by contract id, plus a
memoised fold of annotation text. The tag grammar stays the import and
export format: ``import_annotation`` seeds a log from a legacy annotation and
``export_annotation`` renders a log back into tag text.
"""

from collections import OrderedDict
from datetime import date
from typing import Dict, List, Optional, Tuple
import hashlib
import logging
import threading

from .codec import decode, upsert
from .config import get_config
from .contracts import Contract
from .events import LedgerEvent
from .projector import LedgerProjection, LedgerState, fold_events, project

logger = logging.getLogger("contract_ledger.store")


class LedgerEventStore:
    """Ordered typed event log per contract"""

    def __init__(self):
        self._logs: Dict[str, List[LedgerEvent]] = {}
        self._lock = threading.RLock()

    def append(self, contract_id: str, event: LedgerEvent) -> None:
        """Append one event to a contract's log"""
        with self._lock:
            self._logs.setdefault(contract_id, []).append(event)

    def extend(self, contract_id: str, events: List[LedgerEvent]) -> None:
        """Append several events, in order"""
        with self._lock:
            self._logs.setdefault(contract_id, []).extend(events)

    def events(self, contract_id: str) -> List[LedgerEvent]:
        """Copy of a contract's log; empty for unknown contracts"""
        with self._lock:
            return list(self._logs.get(contract_id, []))

    def contract_ids(self) -> List[str]:
        with self._lock:
            return list(self._logs)

    def clear(self, contract_id: str) -> bool:
        """Drop a contract's log"""
        with self._lock:
            return self._logs.pop(contract_id, None) is not None

    def import_annotation(self, contract_id: str, annotation: Optional[str]) -> int:
        """
        Seed a contract's log from annotation text.

        Returns:
            Number of events imported

        Raises:
            ValueError: If the contract already has events
        """
        events = decode(annotation)
        with self._lock:
            if self._logs.get(contract_id):
                raise ValueError(f"Contract {contract_id} already has a ledger log")
            self._logs[contract_id] = events
        logger.info(f"Imported {len(events)} ledger event(s) for contract {contract_id}")
        return len(events)

    def export_annotation(self, contract_id: str, prose: str = "") -> str:
        """
        Render a contract's log as annotation text.

        Superseded events collapse into the latest one per key, so the text
        folds to the same state as the log.
        """
        annotation = prose
        for event in self.events(contract_id):
            annotation = upsert(annotation, event)
        return annotation

    def state(self, contract_id: str) -> LedgerState:
        """Fold a contract's log"""
        return fold_events(self.events(contract_id))


class ProjectionCache:
    """
    LRU memo of folded annotations keyed by ``(contract id, annotation hash)``.

    Any change to the annotation changes the key, so entries never go stale;
    old ones simply age out.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size if max_size is not None else get_config().projection_cache_size
        self._entries: "OrderedDict[Tuple[str, str], LedgerState]" = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(contract: Contract) -> Tuple[str, str]:
        digest = hashlib.sha256((contract.annotation or "").encode("utf-8")).hexdigest()
        return contract.id, digest

    def state(self, contract: Contract) -> LedgerState:
        """Folded ledger state of a contract, decoded at most once per annotation"""
        key = self._key(contract)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return cached
            self.misses += 1

        state = fold_events(decode(contract.annotation))
        with self._lock:
            self._entries[key] = state
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
        return state

    def project(self, contract: Contract, today: Optional[date] = None) -> LedgerProjection:
        """Project a contract using the memoised fold"""
        return project(contract, today, state=self.state(contract))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
