# src/windcube/main.py
import argparse
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from windcube import config
from windcube.refresh import CubeRefresher
from windcube.registries import build_metric_registry, build_source_registry
from windcube.scenario import ScenarioDocument
from windcube.sensitivity import tornado_frame, tornado_statistics

# Define a custom theme for log levels
log_theme = Theme({
    "logging.level.debug": "dim blue",
    "logging.level.info": "green",
    "logging.level.warning": "yellow",
    "logging.level.error": "bold red",
    "logging.level.critical": "bold red blink",
})

logger = logging.getLogger(__name__)


def file_log_handler(log_file: str) -> logging.FileHandler:
    """Plain-text handler for `--log-file`; the console keeps the rich handler."""
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
    return file_handler


def configure_logging(level: str = config.LOG_LEVEL, log_file: Optional[str] = None) -> None:
    rich_console_for_logging = Console(theme=log_theme, stderr=True)
    handlers = [RichHandler(console=rich_console_for_logging, rich_tracebacks=True, show_path=False)]
    if log_file:
        handlers.append(file_log_handler(log_file))
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="windcube",
        description="Refresh the financial cube of a wind-farm scenario and print its metrics.",
    )
    parser.add_argument("scenario", help="Path to the scenario JSON document.")
    parser.add_argument(
        "--force", action="store_true", help="Rebuild the percentile selection instead of loading the saved one."
    )
    parser.add_argument("--no-sensitivity", action="store_true", help="Skip the tornado sensitivity stage.")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: %(default)s).")
    parser.add_argument("--log-file", help="Also write plain-text logs to this file.")
    return parser


def _format(formatter, value) -> str:
    if not isinstance(value, (int, float)):
        return str(value)
    if formatter is None:
        return f"{value:,.2f}"
    try:
        return formatter(value)
    except (TypeError, ValueError):
        return f"{value:,.2f}"


def metrics_table(store) -> Table:
    percentiles = store.percentile_info.available if store.percentile_info else []
    table = Table(title="Financial Metrics", header_style="bold cyan")
    table.add_column("Metric", style="bold")
    for percentile in percentiles:
        table.add_column(f"P{percentile}", justify="right")

    values = store.get_metric()
    for record in store.metrics:
        row = [record.metadata.name or record.id]
        for percentile in percentiles:
            entry = values.get(record.id, {}).get(percentile)
            row.append(_format(record.metadata.formatter, entry["value"]) if entry else "-")
        table.add_row(*row)
    return table


def tornado_table(metric_id: str, results) -> Table:
    df = tornado_frame(results)
    table = Table(title=f"Tornado: {metric_id}", header_style="bold magenta")
    for column in ["rank", "variable", "low_value", "base_value", "high_value", "impact", "percent_spread"]:
        table.add_column(column.replace("_", " ").title(), justify="left" if column == "variable" else "right")
    for row in df.itertuples(index=False):
        table.add_row(
            str(row.rank),
            row.variable,
            f"{row.low_value:,.2f}",
            f"{row.base_value:,.2f}",
            f"{row.high_value:,.2f}",
            f"{row.impact:,.2f}",
            f"{row.percent_spread:.1f}%",
        )
    return table


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level.upper(), args.log_file)
    ui_console = Console()

    try:
        scenario = ScenarioDocument.from_json_file(args.scenario)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load scenario '{args.scenario}': {e}", exc_info=True)
        print("Fatal Error: Could not load the scenario. Check logs.", file=sys.stderr)
        return 1

    refresher = CubeRefresher(
        scenario,
        build_source_registry(),
        build_metric_registry(),
        run_sensitivity=not args.no_sensitivity,
    )
    refresher.request_refresh(force=args.force)
    store = refresher.run()

    if store is None:
        ui_console.print(Panel(Text(refresher.error or "Refresh failed.", style="bold red"), title=" Refresh Failed "))
        return 1

    ui_console.print(metrics_table(store))
    for metric_id, results in store.sensitivity.items():
        if results:
            ui_console.print(tornado_table(metric_id, results))
    if store.sensitivity:
        summary = tornado_statistics(store.sensitivity)
        ui_console.print(
            Panel(
                Text(
                    f"Rankings: {summary['total_rankings']}  |  Avg impact: {summary['avg_impact']}  |  "
                    f"Max impact: {summary['max_impact']}  |  Significant inputs: {summary['significant_inputs']}"
                ),
                title=" Sensitivity Summary ",
                border_style="bold green",
            )
        )

    status = refresher.get_cube_status()
    logger.info(
        f"Cube refreshed: {status['source_data_count']} sources, {status['metrics_data_count']} metrics, "
        f"{status['sensitivity_data_count']} sensitivity analyses."
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
