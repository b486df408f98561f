"""
Ledger storage: an append-only event log per agent.

Appending never rewrites earlier events, so two writers for different
agents cannot clobber each other. Writers for the same agent are
serialised by the ledger.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Protocol

from ..errors import PersistenceError

logger = logging.getLogger("persona_trader.analytics.store")

Event = Dict[str, Any]


class LedgerStore(Protocol):
    def append(self, agent_id: str, events: List[Event]) -> None:
        ...

    def load_all(self) -> Dict[str, List[Event]]:
        ...


class InMemoryLedgerStore:
    def __init__(self):
        self._events: Dict[str, List[Event]] = {}
        self._lock = threading.Lock()

    def append(self, agent_id: str, events: List[Event]) -> None:
        with self._lock:
            self._events.setdefault(agent_id, []).extend(json.loads(json.dumps(events)))

    def load_all(self) -> Dict[str, List[Event]]:
        with self._lock:
            return {agent_id: list(events) for agent_id, events in self._events.items()}


class JsonlLedgerStore:
    """One <agent_id>.jsonl file per agent under base_dir."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, agent_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in agent_id)
        return self.base_dir / f"{safe}.jsonl"

    def append(self, agent_id: str, events: List[Event]) -> None:
        payload = "".join(json.dumps(event, default=str) + "\n" for event in events)
        try:
            with open(self._path(agent_id), "a") as f:
                f.write(payload)
                f.flush()
        except OSError as e:
            raise PersistenceError(agent_id, str(e))

    def load_all(self) -> Dict[str, List[Event]]:
        result: Dict[str, List[Event]] = {}
        for path in sorted(self.base_dir.glob("*.jsonl")):
            events: List[Event] = []
            try:
                with open(path) as f:
                    for line_no, line in enumerate(f, start=1):
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            events.append(json.loads(line))
                        except json.JSONDecodeError:
                            logger.error(f"Skipping corrupt ledger line {path.name}:{line_no}")
            except OSError as e:
                raise PersistenceError(path.stem, str(e))
            if events:
                result[events[0].get("agent_id", path.stem)] = events
        return result
