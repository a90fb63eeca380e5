import argparse

from meterwise.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="meterwise",
        description="Partner billing usage reports with tiered rating",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address the metrics endpoint listens on (default: :9186)",
    )
    parser.add_argument(
        "--report.interval",
        dest="report_interval",
        type=int,
        default=3600,
        help="Seconds between report cycles (default: 3600)",
    )
    parser.add_argument(
        "--report.months",
        dest="report_months",
        type=int,
        default=3,
        help="Months of usage covered by a report (default: 3)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Build one report, print it as JSON and exit",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.report_interval = args.report_interval
    config.report_months = args.report_months
    config.log_level = args.log_level
    config.log_format = args.log_format
    config.once = args.once
    return config
