"""
Auto-trade scheduler - recurring decision cycles per agent.

Each active agent owns one cancellable timer task that sleeps for a jittered
interval and then launches a cycle as a separate task. A slow or failing
cycle never delays the next timer. stop() cancels only the timer; a cycle
already in flight runs to completion.

The next fire time of every active agent is persisted so that a restart
resumes on the same schedule instead of firing immediately.
"""
import asyncio
import json
import logging
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..config import TradingConfig

logger = logging.getLogger("persona_trader.agents.scheduler")


class AutoTradeScheduler:
    """Jittered, cancellable per-agent cycle timers."""

    def __init__(
        self,
        run_cycle: Callable[[str], Awaitable[Any]],
        config: TradingConfig,
        rng: Optional[random.Random] = None,
        state_path: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._run_cycle = run_cycle
        self.config = config
        self.rng = rng or random.Random()
        self.state_path = Path(state_path or Path(config.log_dir) / "scheduler_state.json")
        self.clock = clock
        self._sleep = sleep
        self._timers: Dict[str, asyncio.Task] = {}
        self._next_fire: Dict[str, datetime] = {}
        # fire times from the previous process not yet claimed by start()
        self._persisted: Dict[str, datetime] = self._load_state()
        self._inflight: Set[asyncio.Task] = set()
        self.cycles_launched: Dict[str, int] = {}

    def next_interval(self) -> float:
        return self.rng.uniform(self.config.auto_trade_min_seconds, self.config.auto_trade_max_seconds)

    def is_active(self, agent_id: str) -> bool:
        task = self._timers.get(agent_id)
        return task is not None and not task.done()

    def start(self, agent_id: str) -> datetime:
        """
        Start auto-trading for an agent. Idempotent.

        A persisted next fire time in the future is honoured; otherwise the
        first cycle fires after a fresh jittered interval.
        """
        if self.is_active(agent_id):
            return self._next_fire[agent_id]

        now = self.clock()
        persisted = self._persisted.pop(agent_id, None)
        delay = self.next_interval()
        if persisted is not None and persisted > now:
            delay = (persisted - now).total_seconds()
            logger.info(f"AUTO-TRADE: resuming {agent_id}, next cycle at {persisted.isoformat()}")

        self._next_fire[agent_id] = now + timedelta(seconds=delay)
        self._save_state()
        self._timers[agent_id] = asyncio.create_task(self._timer_loop(agent_id, delay))
        logger.info(f"AUTO-TRADE STARTED: {agent_id} (first cycle in {delay:.0f}s)")
        return self._next_fire[agent_id]

    def stop(self, agent_id: str) -> bool:
        """Cancel the agent's timer. Returns False if it was not active."""
        task = self._timers.pop(agent_id, None)
        self._next_fire.pop(agent_id, None)
        self._persisted.pop(agent_id, None)
        self._save_state()
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"AUTO-TRADE STOPPED: {agent_id}")
        return True

    async def stop_all(self, wait_for_inflight: bool = False):
        for agent_id in list(self._timers):
            self.stop(agent_id)
        if wait_for_inflight and self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def shutdown(self):
        """Cancel timers for process exit, keeping persisted state for the next start."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def resume_persisted(self) -> List[str]:
        """Restart timers for every agent recorded in the state file."""
        resumed = []
        for agent_id in list(self._persisted):
            self.start(agent_id)
            resumed.append(agent_id)
        return resumed

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            agent_id: {
                "active": self.is_active(agent_id),
                "next_fire": fire.isoformat(),
                "cycles_launched": self.cycles_launched.get(agent_id, 0),
            }
            for agent_id, fire in self._next_fire.items()
        }

    async def _timer_loop(self, agent_id: str, delay: float):
        while True:
            await self._sleep(delay)
            self._launch(agent_id)
            delay = self.next_interval()
            self._next_fire[agent_id] = self.clock() + timedelta(seconds=delay)
            self._save_state()

    def _launch(self, agent_id: str):
        task = asyncio.create_task(self._guarded_cycle(agent_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        self.cycles_launched[agent_id] = self.cycles_launched.get(agent_id, 0) + 1

    async def _guarded_cycle(self, agent_id: str):
        try:
            await self._run_cycle(agent_id)
        except Exception as e:
            logger.error(f"AUTO-TRADE cycle failed for {agent_id}: {e}")

    def _load_state(self) -> Dict[str, datetime]:
        if not self.state_path.exists():
            return {}
        try:
            with open(self.state_path) as f:
                raw = json.load(f)
            return {agent_id: datetime.fromisoformat(ts) for agent_id, ts in raw.items()}
        except (OSError, ValueError, AttributeError, TypeError) as e:
            logger.warning(f"Ignoring unreadable scheduler state {self.state_path}: {e}")
            return {}

    def _save_state(self):
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_path, "w") as f:
                state = {**self._persisted, **self._next_fire}
                json.dump({a: t.isoformat() for a, t in state.items()}, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to persist scheduler state: {e}")
