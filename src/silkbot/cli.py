from __future__ import annotations

import argparse
import json
import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation

from pydantic import ValidationError

from silkbot.adapters.chain_gateway import GatewayChainClient
from silkbot.adapters.graphql_client import GraphQLLiquiditySource, build_liquidity_graph
from silkbot.adapters.telegram_notifier import Notifier, NullNotifier, TelegramNotifier
from silkbot.config import Settings
from silkbot.domain.liquidity import LiquidityGraph
from silkbot.domain.routing import find_routes
from silkbot.logging_utils import setup_logging
from silkbot.services.agent_runner import AgentRunner
from silkbot.services.orchestrator import TransactionOrchestrator
from silkbot.services.process_lock import LockHeldError, single_instance_lock
from silkbot.services.snapshot_service import PositionSnapshotBuilder
from silkbot.services.state_store import JsonFileRunStateStore, RunStateCorruptError
from silkbot.services.tx_log import TransactionLog

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="silkbot",
        epilog="Configuration is read from the environment and an optional .env file.",
    )
    parser.add_argument("--env-file", default=None, help="Optional dotenv file to load")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one agent invocation")
    run_parser.add_argument(
        "--state-path", default=None, help="Run-state JSON path (defaults to env STATE_PATH)"
    )
    run_parser.add_argument(
        "--tx-log", default=None, help="Transaction log path (defaults to env TX_LOG_PATH)"
    )
    run_parser.add_argument(
        "--no-lock", action="store_true", help="Skip the single-instance process lock"
    )

    status_parser = subparsers.add_parser("status", help="Print the persisted run state")
    status_parser.add_argument("--state-path", default=None)

    quote_parser = subparsers.add_parser("quote", help="Print ranked swap routes")
    quote_parser.add_argument("--token", required=True, help="Input token address or symbol")
    quote_parser.add_argument("--amount", required=True, help="Input amount in base units")
    quote_parser.add_argument(
        "--target", default=None, help="Output token address or symbol (defaults to Silk)"
    )
    quote_parser.add_argument("--max-hops", type=int, default=None)
    quote_parser.add_argument("--limit", type=int, default=5)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args.env_file)
    except ValidationError as exc:
        print(f"invalid configuration: {exc.error_count()} errors")
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            print(f"  {location}: {error.get('msg')}")
        return 2

    setup_logging(settings.log_level, settings.log_timezone, settings.known_secrets())
    logger.info(
        "runtime_prepared",
        extra={"extra": {"command": args.command, "pid": os.getpid(), "node": settings.node}},
    )

    if args.command == "run":
        return run_agent(
            settings,
            state_path=args.state_path or settings.state_path,
            tx_log_path=args.tx_log or settings.tx_log_path,
            use_lock=not args.no_lock,
        )
    if args.command == "status":
        return show_status(settings, state_path=args.state_path or settings.state_path)
    if args.command == "quote":
        return show_quote(
            settings,
            token=args.token,
            amount=args.amount,
            target=args.target,
            max_hops=args.max_hops,
            limit=args.limit,
        )
    return 1


def _load_settings(env_file: str | None) -> Settings:
    if env_file in (None, ""):
        return Settings()
    return Settings(_env_file=env_file)


def _close_best_effort(resource: object, label: str) -> None:
    close = getattr(resource, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception:  # noqa: BLE001
        logger.warning(
            "Failed to close resource", extra={"extra": {"resource": label}}, exc_info=True
        )


def _build_notifier(settings: Settings) -> Notifier:
    if settings.bot_token is None or not settings.testing_chat_id:
        return NullNotifier()
    return TelegramNotifier(settings.bot_token.get_secret_value(), settings.testing_chat_id)


def run_agent(
    settings: Settings,
    *,
    state_path: str,
    tx_log_path: str,
    use_lock: bool = True,
) -> int:
    missing = settings.missing_required()
    if missing:
        print(f"missing required settings: {', '.join(missing)}")
        return 2

    try:
        if use_lock:
            with single_instance_lock(state_path=state_path):
                return _run_once(settings, state_path=state_path, tx_log_path=tx_log_path)
        return _run_once(settings, state_path=state_path, tx_log_path=tx_log_path)
    except LockHeldError as exc:
        print(str(exc))
        logger.warning("run_skipped_locked", extra={"extra": {"state_path": state_path}})
        return 2


def _run_once(settings: Settings, *, state_path: str, tx_log_path: str) -> int:
    config = settings.engine_config()
    api_token = settings.gateway_api_token
    chain = GatewayChainClient(
        settings.chain_gateway_url or "",
        sender=config.wallet_address,
        timeout=settings.gateway_timeout_seconds,
        api_token=api_token.get_secret_value() if api_token is not None else None,
    )
    liquidity = GraphQLLiquiditySource(settings.graphql_url) if settings.graphql_url else None
    notifier = _build_notifier(settings)
    viewing_key = settings.silk_viewing_key
    try:
        runner = AgentRunner(
            config=config,
            store=JsonFileRunStateStore(state_path),
            snapshot_builder=PositionSnapshotBuilder(chain, config),
            orchestrator=TransactionOrchestrator(
                chain,
                config,
                tx_log=TransactionLog(tx_log_path),
                notifier=notifier,
                viewing_key=viewing_key.get_secret_value() if viewing_key is not None else "",
            ),
            liquidity_source=liquidity,
        )
        outcome = runner.run_once()
    except Exception:  # noqa: BLE001
        logger.exception("run_failed", extra={"extra": {"state_path": state_path}})
        return 1
    finally:
        _close_best_effort(chain, "chain_gateway")
        _close_best_effort(liquidity, "graphql")
        _close_best_effort(notifier, "notifier")

    suffix = f" ({outcome.reason})" if outcome.reason else ""
    print(f"run {outcome.run_id}: {outcome.status}{suffix}")
    return 0


def show_status(settings: Settings, *, state_path: str) -> int:
    store = JsonFileRunStateStore(state_path)
    try:
        state = store.load()
    except RunStateCorruptError as exc:
        print(str(exc))
        return 1
    now = datetime.now(UTC)
    interval = timedelta(hours=settings.summary_interval_hours)
    payload = json.loads(state.model_dump_json())
    payload["phase"] = str(state.phase(now, interval))
    payload["average_query_latency"] = state.average_query_latency()
    payload["summary"] = state.summary_line(now)
    payload["chain_id"] = settings.chain_id
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def _resolve_token(graph: LiquidityGraph, value: str) -> str | None:
    if graph.token(value) is not None:
        return value
    wanted = value.casefold()
    for token in graph.tokens.values():
        if token.symbol.casefold() == wanted:
            return token.address
    return None


def show_quote(
    settings: Settings,
    *,
    token: str,
    amount: str,
    target: str | None,
    max_hops: int | None,
    limit: int,
) -> int:
    if not settings.graphql_url:
        print("missing required settings: GRAPHQL")
        return 2
    try:
        amount_in = Decimal(amount)
    except InvalidOperation:
        print(f"invalid amount: {amount}")
        return 2

    source = GraphQLLiquiditySource(settings.graphql_url)
    try:
        pools = source.fetch_pools()
        tokens = source.fetch_tokens()
    finally:
        _close_best_effort(source, "graphql")
    if pools is None or tokens is None:
        print("liquidity data unavailable")
        return 1

    graph = build_liquidity_graph(pools, tokens, controls=settings.iteration_controls())
    input_token = _resolve_token(graph, token)
    output_token = _resolve_token(graph, target or settings.silk_token_address or "")
    if input_token is None or output_token is None:
        print("unknown token")
        return 2

    routes = find_routes(
        graph,
        input_token=input_token,
        output_token=output_token,
        amount_in=amount_in,
        max_hops=max_hops or settings.max_route_hops,
    )
    rows = []
    for rank, route in enumerate(routes[: max(limit, 0)], start=1):
        symbols = [
            (graph.token(address).symbol if graph.token(address) else address)
            for address in route.tokens
        ]
        rows.append(
            {
                "rank": rank,
                "path": symbols,
                "pairs": [pair.address for pair in route.pairs],
                "quote_output": str(route.quote_output_amount),
                "min_output": str(route.min_output(settings.slippage_tolerance)),
            }
        )
    print(json.dumps({"input": input_token, "output": output_token, "routes": rows}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
