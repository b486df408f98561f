"""
FastAPI service for the persona trading pipeline.

Services are built once per app in the lifespan (or injected by the caller)
and stored on app.state.
"""
import os
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .agents.schemas import AgentProfile, RiskLimits, TradeOutcome
from .agents.signals import MarketData, NewsItem, StaticSignalProvider, analyze_market, analyze_news
from .analytics.performance import (
    AgentPerformance,
    ComparativePerformance,
    Leaderboard,
    Timeframe,
)
from .config import load_config
from .errors import ConfigError
from .services import TradingServices, build_services

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [TRADING] %(levelname)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("persona_trader")


class RiskLimitsUpdate(BaseModel):
    max_position_size: Optional[float] = None
    max_daily_risk: Optional[float] = None
    max_drawdown: Optional[float] = None
    max_leverage: Optional[float] = None
    sector_concentration: Optional[float] = None
    min_cash_reserve: Optional[float] = None
    min_confidence: Optional[float] = None


class CycleRequest(BaseModel):
    symbol: Optional[str] = None
    session_id: Optional[str] = None


class SignalsUpdate(BaseModel):
    market: Optional[MarketData] = None
    news: Optional[List[NewsItem]] = None


def get_services(request: Request) -> TradingServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Trading service not initialized")
    return services


def create_app(services: Optional[TradingServices] = None) -> FastAPI:
    """Build the API. Without services, they are built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            logger.info("Starting persona trading service...")
            app.state.services = build_services(load_config())
        svc: TradingServices = app.state.services
        logger.info(f"Trading mode: {svc.config.get_mode_description()}")
        resumed = svc.scheduler.resume_persisted()
        if resumed:
            logger.info(f"[Scheduler] Resumed auto-trading for {resumed}")

        yield

        await svc.scheduler.shutdown()
        close = getattr(svc.broadcaster, "close", None)
        if close is not None:
            await close()
        logger.info("Trading service shutdown complete")

    app = FastAPI(
        title="Persona Trader",
        description="Agent personas -> risk validation -> conflict-safe execution -> performance ledger",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError):
        status = 404 if exc.agent_id is not None else 400
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        svc = get_services(request)
        return {
            "status": "ok",
            "mode": svc.config.trading_mode.value,
            "agents": len(svc.registry.list_profiles()),
        }

    @app.get("/agents", response_model=List[AgentProfile])
    async def list_agents(request: Request):
        return get_services(request).registry.list_profiles()

    @app.get("/agents/{agent_id}", response_model=AgentProfile)
    async def get_agent(agent_id: str, request: Request):
        return get_services(request).registry.get_profile(agent_id)

    @app.get("/agents/{agent_id}/risk-limits", response_model=RiskLimits)
    async def get_risk_limits(agent_id: str, request: Request):
        return get_services(request).registry.get_limits(agent_id)

    @app.patch("/agents/{agent_id}/risk-limits", response_model=RiskLimits)
    async def update_risk_limits(agent_id: str, body: RiskLimitsUpdate, request: Request):
        changes = body.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No risk limits supplied")
        return get_services(request).registry.update_limits(agent_id, **changes).limits

    @app.put("/signals")
    async def update_signals(body: SignalsUpdate, request: Request):
        provider = get_services(request).signal_provider
        if not isinstance(provider, StaticSignalProvider):
            raise HTTPException(status_code=409, detail="Signal provider does not accept pushed signals")
        provider.update(
            market=analyze_market(body.market) if body.market is not None else None,
            news=analyze_news(body.news) if body.news is not None else None,
        )
        return {"market": provider.market, "news": provider.news}

    @app.post("/agents/{agent_id}/cycle")
    async def run_cycle(agent_id: str, request: Request, body: Optional[CycleRequest] = None):
        body = body or CycleRequest()
        result = await get_services(request).orchestrator.run_cycle(
            agent_id, symbol=body.symbol, session_id=body.session_id,
        )
        return result.model_dump(mode="json")

    @app.post("/agents/{agent_id}/decisions/{decision_id}/outcome")
    async def record_outcome(agent_id: str, decision_id: str, outcome: TradeOutcome, request: Request):
        svc = get_services(request)
        svc.registry.get_profile(agent_id)
        if not svc.ledger.update_outcome(agent_id, decision_id, outcome):
            raise HTTPException(
                status_code=409,
                detail=f"Decision {decision_id} not found or outcome already recorded",
            )
        return {"success": True, "decision_id": decision_id}

    @app.get("/agents/{agent_id}/performance", response_model=AgentPerformance)
    async def agent_performance(agent_id: str, request: Request, timeframe: Timeframe = Timeframe.ALL):
        svc = get_services(request)
        svc.registry.get_profile(agent_id)
        perf = svc.ledger.get_agent_performance(agent_id, timeframe)
        if perf is None:
            raise HTTPException(status_code=404, detail=f"No performance data for {agent_id}")
        return perf

    @app.get("/performance/comparative", response_model=ComparativePerformance)
    async def comparative(request: Request, timeframe: Timeframe = Timeframe.THIRTY_DAYS):
        return get_services(request).ledger.get_comparative_performance(timeframe)

    @app.get("/performance/leaderboard", response_model=Leaderboard)
    async def leaderboard(
        request: Request,
        metric: str = "total_return",
        timeframe: Timeframe = Timeframe.THIRTY_DAYS,
    ):
        return get_services(request).ledger.get_leaderboard(metric, timeframe)

    @app.post("/agents/{agent_id}/auto-trade/start")
    async def start_auto_trade(agent_id: str, request: Request):
        svc = get_services(request)
        svc.registry.get_profile(agent_id)
        next_fire = svc.scheduler.start(agent_id)
        return {
            "success": True,
            "agent_id": agent_id,
            "next_fire": next_fire.isoformat(),
            "interval_seconds": [svc.config.auto_trade_min_seconds, svc.config.auto_trade_max_seconds],
        }

    @app.post("/agents/{agent_id}/auto-trade/stop")
    async def stop_auto_trade(agent_id: str, request: Request):
        svc = get_services(request)
        svc.registry.get_profile(agent_id)
        stopped = svc.scheduler.stop(agent_id)
        return {"success": True, "agent_id": agent_id, "was_active": stopped}

    @app.get("/auto-trade/status")
    async def auto_trade_status(request: Request):
        return get_services(request).scheduler.status()

    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("TRADING_SERVICE_PORT", "8001"))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
