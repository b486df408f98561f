"""
CycleAuditLog - audit trail of decision cycles.

One JSON line per cycle in cycles/cycles_YYYYMMDD.jsonl. Audit failures are
logged and never propagate into the trading path.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional

from .schemas import CycleResult

logger = logging.getLogger("persona_trader.agents.observability")


class CycleAuditLog:
    """Appends cycle results to a daily JSONL file."""

    def __init__(self, log_dir: str):
        self.log_dir = Path(log_dir) / "cycles"
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, result: CycleResult) -> Path:
        return self.log_dir / f"cycles_{result.timestamp.strftime('%Y%m%d')}.jsonl"

    def log_cycle(self, result: CycleResult):
        """Log complete cycle result."""
        try:
            with open(self._path_for(result), "a") as f:
                f.write(json.dumps(result.model_dump(mode="json"), default=str) + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write cycle audit: {e}")
        self._log_summary(result)

    def _log_summary(self, result: CycleResult):
        summary = result.to_summary()
        logger.info(
            f"CYCLE SUMMARY | "
            f"Agent: {summary['agent_id']} | "
            f"Action: {summary['action']} {summary['symbol'] or ''} | "
            f"Approved: {summary['approved']} | "
            f"Execution: {summary['execution_state'] or 'N/A'} | "
            f"Failed stage: {summary['failed_stage'] or '-'} | "
            f"Duration: {summary['duration_ms']:.0f}ms"
        )

    def read_day(self, day: str, agent_id: Optional[str] = None) -> List[dict]:
        """Read audit entries for a YYYYMMDD day, optionally for one agent."""
        path = self.log_dir / f"cycles_{day}.jsonl"
        if not path.exists():
            return []
        entries = []
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if agent_id is None or entry.get("agent_id") == agent_id:
                    entries.append(entry)
        return entries
