"""
Command-line entry point.

    python -m persona_trader.main serve [--port 8001]
    python -m persona_trader.main cycle <agent_id> [--symbol AAPL]
    python -m persona_trader.main performance <agent_id> [--timeframe 30d]
"""
import argparse
import asyncio
import json
import logging
import os
import sys

from .config import load_config
from .errors import TradingError


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [TRADING] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def cmd_serve(args) -> int:
    import uvicorn
    from .api import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def cmd_cycle(args) -> int:
    from .services import build_services

    services = build_services(load_config())
    result = asyncio.run(services.orchestrator.run_cycle(args.agent_id, symbol=args.symbol))
    print(json.dumps(result.model_dump(mode="json"), indent=2, default=str))
    return 1 if result.failed_stage else 0


def cmd_performance(args) -> int:
    from .services import build_services

    services = build_services(load_config())
    perf = services.ledger.get_agent_performance(args.agent_id, args.timeframe)
    if perf is None:
        print(f"No performance data for {args.agent_id}", file=sys.stderr)
        return 1
    print(json.dumps(perf.model_dump(mode="json"), indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="persona-trader", description="Persona trading pipeline")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("TRADING_SERVICE_PORT", "8001")))
    serve.set_defaults(func=cmd_serve)

    cycle = sub.add_parser("cycle", help="Run one decision cycle")
    cycle.add_argument("agent_id")
    cycle.add_argument("--symbol")
    cycle.set_defaults(func=cmd_cycle)

    perf = sub.add_parser("performance", help="Print an agent's performance")
    perf.add_argument("agent_id")
    perf.add_argument("--timeframe", default="all", choices=["1d", "7d", "30d", "90d", "all"])
    perf.set_defaults(func=cmd_performance)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except (TradingError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
