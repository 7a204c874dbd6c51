from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config, load_price_overrides
from ..db.batch_insert import BatchInsertError, persist_settlement
from ..db.connection import db_cursor
from ..excel.reader import InputFileError
from ..logging.init import log_summary, set_debug, setup_logging
from ..logging.run_log import RunLog
from ..models.config_models import ReconConfig
from ..models.settlement import SettlementAggregate
from ..services.errors import ReconciliationError, TaskCancelledError
from ..services.orchestrator import (
    FILTER_OUTPUT_PREFIX,
    ORDER_MERGE_OUTPUT_PREFIX,
    SETTLEMENT_OUTPUT_PREFIX,
    default_output_path,
    load_input_rows,
    run_bill_filter,
    run_order_merge,
    run_settlement,
    scan_input_files,
)
from ..services.progress import PercentProgressBar
from ..services.summary import render_filter_summary, render_merge_summary, render_settlement_summary
from ..services.worker import SettlementTaskChannel

"""CLI entrypoint.

    bill-recon [--config PATH] [--debug] filter FILE_OR_DIR... [--prices P.yml] [--output OUT.xlsx] [--deduct-refunds]
    bill-recon [--config PATH] [--debug] merge FILE_OR_DIR... [--output OUT.xlsx]
    bill-recon [--config PATH] [--debug] settle FILE_OR_DIR... [--output OUT.xlsx] [--persist-table T]

Exit codes:
    0   success
    1   fatal (config, input file, validation, export or database failure)
    2   filter finished but some products have no unit price
    130 cancelled (Ctrl-C)
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PENDING_PRICES = 2
EXIT_CANCELLED = 130

_SUMMARY_LABEL = "SUMMARY "


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True so .env wins over variables already in the environment
    (database connection parameters).
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="bill-recon", description="JD bill filter & settlement reconciliation")
    p.add_argument("--config", type=Path, default=None, help="Config file (default: config/recon.yml if present)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    f = sub.add_parser("filter", help="Filter order bills, price and merge products")
    f.add_argument("inputs", nargs="+", type=Path, metavar="FILE_OR_DIR")
    f.add_argument("--prices", type=Path, default=None, help="YAML mapping product code -> unit price")
    f.add_argument("--output", type=Path, default=None, help="Result workbook path")
    f.add_argument(
        "--deduct-refunds",
        action="store_true",
        help="Subtract refunded / after-sales quantities per product instead of dropping refunded orders",
    )

    m = sub.add_parser("merge", help="Merge order lines into per-product totals from the bill amounts")
    m.add_argument("inputs", nargs="+", type=Path, metavar="FILE_OR_DIR")
    m.add_argument("--output", type=Path, default=None, help="Result workbook path")

    s = sub.add_parser("settle", help="Aggregate settlement bills per product code")
    s.add_argument("inputs", nargs="+", type=Path, metavar="FILE_OR_DIR")
    s.add_argument("--output", type=Path, default=None, help="Result workbook path")
    s.add_argument("--persist-table", default=None, help="Also insert the results into this PostgreSQL table")
    return p.parse_args(list(argv))


def _log_summary_line(line: str) -> None:
    # log_summary prints the label itself
    log_summary(line[len(_SUMMARY_LABEL):] if line.startswith(_SUMMARY_LABEL) else line)


def _run_filter(args: argparse.Namespace, cfg: ReconConfig, run_log: RunLog, logger: logging.Logger) -> int:
    try:
        files = scan_input_files(args.inputs)
        rows = load_input_rows(files, cfg)
        overrides = load_price_overrides(args.prices) if args.prices is not None else None
        output = args.output or default_output_path(cfg, FILTER_OUTPUT_PREFIX)
        result = run_bill_filter(
            rows,
            cfg,
            price_overrides=overrides,
            log_sink=run_log,
            output_path=output,
            deduct_refunds=args.deduct_refunds,
        )
    except InputFileError as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except ConfigError as e:
        logger.error(f"prices: {e}")
        return EXIT_FATAL
    except ReconciliationError as e:
        logger.error(f"validation: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"output: {e}")
        return EXIT_FATAL

    if result.output_path is not None:
        logger.info(f"result written to {result.output_path}")
    _log_summary_line(render_filter_summary(result))
    return EXIT_PENDING_PRICES if result.pending_products else EXIT_SUCCESS


def _run_merge(args: argparse.Namespace, cfg: ReconConfig, run_log: RunLog, logger: logging.Logger) -> int:
    try:
        files = scan_input_files(args.inputs)
        rows = load_input_rows(files, cfg)
        output = args.output or default_output_path(cfg, ORDER_MERGE_OUTPUT_PREFIX)
        result = run_order_merge(rows, log_sink=run_log, output_path=output)
    except InputFileError as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except ReconciliationError as e:
        logger.error(f"validation: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"output: {e}")
        return EXIT_FATAL

    if result.output_path is not None:
        logger.info(f"result written to {result.output_path}")
    _log_summary_line(render_merge_summary(result))
    return EXIT_SUCCESS


def _run_settle(args: argparse.Namespace, cfg: ReconConfig, logger: logging.Logger) -> int:
    persist = None
    if args.persist_table:
        table = args.persist_table

        def persist(aggregates: Sequence[SettlementAggregate]) -> int:
            with db_cursor(cfg.database) as cur:
                return persist_settlement(cur, table, aggregates)

    try:
        files = scan_input_files(args.inputs)
        output = args.output or default_output_path(cfg, SETTLEMENT_OUTPUT_PREFIX)
        with SettlementTaskChannel(
            amount_columns=cfg.settlement.amount_columns,
            progress_interval=cfg.settlement.progress_interval,
        ) as channel, PercentProgressBar() as bar:
            rows = load_input_rows(files, cfg, channel=channel)
            result = run_settlement(
                rows,
                cfg,
                channel=channel,
                on_progress=bar,
                output_path=output,
                persist=persist,
                files=[f.name for f in files],
            )
    except InputFileError as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except TaskCancelledError as e:
        logger.error(f"settlement: {e}")
        return EXIT_CANCELLED
    except ReconciliationError as e:
        logger.error(f"validation: {e}")
        return EXIT_FATAL
    except (BatchInsertError, psycopg2.Error) as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"output: {e}")
        return EXIT_FATAL

    if result.output_path is not None:
        logger.info(f"result written to {result.output_path}")
    _log_summary_line(render_settlement_summary(result))
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] must not pick up the test runner's own argv
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    run_log = RunLog(logger=logging.getLogger("bill_recon.run"))
    try:
        if args.command == "filter":
            return _run_filter(args, cfg, run_log, logger)
        if args.command == "merge":
            return _run_merge(args, cfg, run_log, logger)
        return _run_settle(args, cfg, logger)
    except KeyboardInterrupt:
        logger.error("cancelled by user")
        return EXIT_CANCELLED
    finally:
        if run_log.entries:
            logger.debug(f"run log appended to {run_log.flush()}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
