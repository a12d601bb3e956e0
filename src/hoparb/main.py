"""Main entry point - runs the arbitrage runner and the read API.

Usage:
    hoparb run               # runner + API until SIGINT/SIGTERM
    hoparb run --no-api      # runner only
    hoparb scan              # one discovery cycle, print routes, nothing written
    hoparb cycle             # one full discover-and-execute cycle
    hoparb stats             # learning store statistics
    hoparb breakers          # breaker health of the running instance
    hoparb emergency reset   # clear the emergency stop of the running instance
"""

import argparse
import asyncio
import json
import logging
import signal
from decimal import Decimal
from typing import Optional

import httpx
import uvicorn

from hoparb.api.app import create_app
from hoparb.config import Settings, get_settings
from hoparb.ledger.database import close_db, init_db
from hoparb.notifications.telegram import close_bot
from hoparb.services.arbitrage_runner import ArbitrageRunner, build_runner
from hoparb.utils.circuit_breaker import breaker_registry

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that runs the runner and the API."""

    def __init__(self, settings: Optional[Settings] = None, with_api: bool = True):
        self.settings = settings or get_settings()
        self.with_api = with_api
        self.runner: Optional[ArbitrageRunner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        logger.info("Starting hoparb...")
        logger.info(f"Environment: {self.settings.environment} (dry_run={self.settings.dry_run})")

        await init_db(self.settings)
        logger.info("Database initialized")

        self.runner = build_runner(self.settings, registry=breaker_registry)

        tasks = [asyncio.create_task(self.runner.run())]
        logger.info("Runner task created")

        api_task = None
        if self.with_api:
            api_task = asyncio.create_task(self._run_api())
            logger.info("API task created")

        await self._shutdown_event.wait()

        # Runner finishes the current hop of in-flight routes
        self.runner.stop()
        await asyncio.gather(*tasks, return_exceptions=True)

        if api_task is not None:
            api_task.cancel()
            await asyncio.gather(api_task, return_exceptions=True)

        await self._cleanup()

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(
                learning_store=self.runner.learning_store,
                registry=breaker_registry,
                emergency=self.runner.emergency,
            )
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")
        if self.runner is not None:
            await self.runner.pipeline.venue.close()
        await close_bot()
        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


async def _scan(settings: Settings, threshold: Optional[Decimal]) -> None:
    runner = build_runner(settings)
    if threshold is not None:
        runner.min_profit_threshold = threshold
    try:
        routes = runner.select(await runner.scan(record_volatility=False))
        print(json.dumps([route.to_dict() for route in routes], indent=2))
    finally:
        await runner.pipeline.venue.close()


async def _cycle(settings: Settings) -> None:
    await init_db(settings)
    runner = build_runner(settings)
    try:
        report = await runner.run_cycle()
        print(json.dumps(
            {
                "discovered": report.discovered,
                "eligible": report.eligible,
                "batches": report.batches,
                "threshold": str(report.threshold),
                "volatility": report.volatility,
                "halted": report.halted,
                "results": [result.to_dict() for result in report.results],
            },
            indent=2,
        ))
    finally:
        await runner.pipeline.venue.close()
        await close_bot()
        await close_db()


def _stats(settings: Settings) -> None:
    from hoparb.arbitrage.learning import LearningStore
    from hoparb.arbitrage.persistence import JsonFileLearningPersistence

    store = LearningStore(JsonFileLearningPersistence(settings.learning_data_path))
    print(json.dumps(store.get_learning_statistics(), indent=2))


def api_base_url(settings: Settings) -> str:
    host = "127.0.0.1" if settings.api_host in ("0.0.0.0", "::") else settings.api_host
    return f"http://{host}:{settings.api_port}"


def call_api(
    settings: Settings,
    method: str,
    path: str,
    json_body: Optional[dict] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> dict:
    """Call the API of a running `hoparb run` process.

    Raises:
        SystemExit: API unreachable or the request was refused
    """
    try:
        with httpx.Client(base_url=api_base_url(settings), timeout=10.0, transport=transport) as client:
            response = client.request(method, path, json=json_body)
    except httpx.HTTPError as e:
        raise SystemExit(f"Cannot reach hoparb API at {api_base_url(settings)}: {e}") from e
    if response.status_code >= 400:
        raise SystemExit(f"{method} {path} failed ({response.status_code}): {response.text}")
    return response.json()


def _breakers(settings: Settings) -> None:
    print(json.dumps(call_api(settings, "GET", "/health/breakers"), indent=2))


def _emergency(settings: Settings, action: str, reason: Optional[str]) -> None:
    if action == "status":
        result = call_api(settings, "GET", "/api/v1/emergency")
    else:
        body = {"reason": reason} if reason else None
        result = call_api(settings, "POST", f"/api/v1/emergency/{action}", json_body=body)
    print(json.dumps(result, indent=2))


def run(with_api: bool = True):
    settings = get_settings()
    configure_logging(settings.debug)
    app = Application(settings, with_api=with_api)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


def cli(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(prog="hoparb", description="Multi-hop DEX arbitrage engine")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Run the arbitrage runner and API")
    run_parser.add_argument("--no-api", action="store_true", help="Do not start the API server")

    scan_parser = sub.add_parser(
        "scan", help="Discover routes once without trading or updating the learning store"
    )
    scan_parser.add_argument("--threshold", type=Decimal, default=None, help="Base profit threshold (%%)")

    sub.add_parser("cycle", help="Run one discover-and-execute cycle")
    sub.add_parser("stats", help="Print learning store statistics")
    sub.add_parser("breakers", help="Print breaker health of the running instance (via its API)")

    emergency_parser = sub.add_parser("emergency", help="Inspect or control the emergency stop (via the API)")
    emergency_parser.add_argument("action", choices=["status", "stop", "reset"])
    emergency_parser.add_argument("--reason", default=None, help="Reason recorded in the stop history")

    args = parser.parse_args(argv)
    settings = get_settings()

    if args.command == "run":
        run(with_api=not args.no_api)
        return

    configure_logging(settings.debug)
    if args.command == "scan":
        asyncio.run(_scan(settings, args.threshold))
    elif args.command == "cycle":
        asyncio.run(_cycle(settings))
    elif args.command == "stats":
        _stats(settings)
    elif args.command == "breakers":
        _breakers(settings)
    elif args.command == "emergency":
        _emergency(settings, args.action, args.reason)


if __name__ == "__main__":
    cli()
