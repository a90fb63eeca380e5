import asyncio
import json
import signal
import sys

import structlog
from prometheus_client import start_http_server

from meterwise.cli import parse_args
from meterwise.context import AppContext
from meterwise.logging import setup_logging
from meterwise.metrics import Metrics
from meterwise.report import Reporter, build_usage_report, report_to_dict

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, json=config.log_format == "json")

    missing = config.missing()
    if missing:
        raise SystemExit(f"Missing configuration: {', '.join(missing)}")

    metrics = Metrics()
    context = AppContext.build(config, metrics)

    async def _run_once() -> "None":
        try:
            reports = await build_usage_report(context.operations, config.report_months)
            json.dump(report_to_dict(reports), sys.stdout, indent=2)
            sys.stdout.write("\n")
        finally:
            await context.close()

    if config.once:
        asyncio.run(_run_once())
        return

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    reporter = Reporter(
        context.operations,
        metrics,
        interval_seconds=config.report_interval,
        months=config.report_months,
    )

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the reporter
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, reporter.stop)

        try:
            await reporter.run()
        finally:
            logger.info("shutting_down")
            await context.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
