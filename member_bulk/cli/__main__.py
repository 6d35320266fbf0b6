from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config, load_lookup_catalog
from ..db.connection import db_cursor
from ..db.gateway import GatewayError, PostgresGateway
from ..errors import BulkCommitError, BulkInputError
from ..excel.reader import load_rows
from ..excel.writer import render_template, template_filename
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.bulk_result import BulkResult
from ..models.config_models import AppConfig
from ..models.error_record import ErrorRecord
from ..services.progress import ProgressTracker
from ..services.reconciler import run_bulk
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m member_bulk.cli import FILE... [--dry-run] [--debug]
    python -m member_bulk.cli template --mode blank|data --out PATH [--downloaded-by NAME]
    python -m member_bulk.cli inspect FILE

Exit codes: 0 all rows accepted, 2 row rejections or a failed file,
1 fatal (config / database connection).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

CONFIG_ENV = "MEMBER_BULK_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/app.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the inherited environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="member_bulk", description="Member directory bulk tools")
    p.add_argument("--config", type=Path, default=None, help="Path to app.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Reconcile one or more workbooks against the member store")
    imp.add_argument("files", nargs="+", type=Path)
    imp.add_argument("--dry-run", action="store_true", help="Validate only, write nothing")
    imp.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")

    tpl = sub.add_parser("template", help="Write a blank or pre-populated workbook")
    tpl.add_argument("--mode", choices=("blank", "data"), default="blank")
    tpl.add_argument("--out", type=Path, default=None, help="Output file or directory")
    tpl.add_argument("--downloaded-by", default="", help="Name recorded on the Instructions sheet")

    ins = sub.add_parser("inspect", help="Print resolved headers and the first rows of a workbook")
    ins.add_argument("file", type=Path)
    ins.add_argument("--rows", type=int, default=3)
    return p.parse_args(argv)


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    path = args.config or Path(os.getenv(CONFIG_ENV, str(DEFAULT_CONFIG_PATH)))
    if args.config is None and not path.exists():
        return AppConfig()
    return load_config(path)


def _error_type(e: Exception) -> str:
    """MissingColumnsError -> MISSING_COLUMNS"""
    name = re.sub(r"Error$", "", type(e).__name__)
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()


def _write_error_report(path: Path, result: BulkResult) -> Path | None:
    if result.error_file is None:
        return None
    out = path.with_name(f"{path.stem}_errors.xlsx")
    out.write_bytes(result.error_file)
    return out


def _run_import(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    catalog = load_lookup_catalog(cfg.lookup_catalog)
    errors = ErrorLogBuffer()
    results: list[BulkResult] = []
    failed_files = 0
    try:
        with db_cursor(cfg.database) as cur:
            gateway = PostgresGateway(cur, page_size=cfg.bulk.page_size)
            with ProgressTracker(len(args.files)) as progress:
                for path in args.files:
                    progress.start_file(path)
                    try:
                        data = path.read_bytes()
                    except OSError as e:
                        logger.error(f"{path.name}: unable to read file: {e}")
                        errors.append(ErrorRecord.create(path.name, -1, "READ_ERROR", str(e)))
                        failed_files += 1
                        progress.finish_file()
                        continue
                    try:
                        result = run_bulk(
                            data, path.name, catalog, gateway,
                            dry_run=args.dry_run, bulk_config=cfg.bulk,
                        )
                    except BulkInputError as e:
                        logger.error(f"{path.name}: {e}")
                        errors.append(ErrorRecord.create(path.name, -1, _error_type(e), str(e)))
                        failed_files += 1
                        progress.finish_file()
                        continue
                    except BulkCommitError as e:
                        logger.error(f"{path.name}: {e}")
                        errors.append_result(e.result)
                        errors.append(ErrorRecord.create(path.name, -1, "COMMIT_FAILED", str(e)))
                        _write_error_report(path, e.result)
                        failed_files += 1
                        progress.finish_file(rejected=e.result.error_count)
                        continue
                    results.append(result)
                    errors.append_result(result)
                    report = _write_error_report(path, result)
                    if report is not None:
                        logger.warning(f"{path.name}: {result.error_count} row(s) rejected -> {report}")
                    logger.info(
                        f"{path.name}: rows={result.total_rows} added={result.added} "
                        f"updated={result.updated} rejected={result.error_count}"
                    )
                    progress.finish_file(rejected=result.error_count)
    except GatewayError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    finally:
        log_path = errors.flush()
        if log_path is not None:
            logger.info(f"error log: {log_path}")

    log_summary(render_summary_line(results, failed_files, dry_run=args.dry_run)[len("SUMMARY "):])
    if failed_files or any(r.error_count for r in results):
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def _run_template(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    catalog = load_lookup_catalog(cfg.lookup_catalog)
    members = []
    if args.mode == "data":
        try:
            with db_cursor(cfg.database) as cur:
                members = PostgresGateway(cur).list_members()
        except GatewayError as e:
            logger.error(f"database: {e}")
            return EXIT_FATAL
    content = render_template(
        catalog, members, mode=args.mode, downloaded_by=args.downloaded_by,
        sheet_name=cfg.bulk.data_sheet_name,
    )
    out = args.out or Path(".")
    if out.is_dir():
        out = out / template_filename(args.mode)
    out.write_bytes(content)
    logger.info(f"template written: {out} ({len(members)} member(s))")
    return EXIT_SUCCESS_ALL


def _run_inspect(args: argparse.Namespace, cfg: AppConfig) -> int:
    try:
        sheet = load_rows(args.file, sheet_name=cfg.bulk.data_sheet_name)
    except BulkInputError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {args.file.name}")
    print(f"  SHEET: {sheet.sheet_name} cols={sheet.columns}")
    for row in sheet.rows[: args.rows]:
        # datetime を含む行は isoformat で表示
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in row.cells.items()}
        print(f"    row {row.row_number}: {safe}")
    print(f"  data_rows={len(sheet.rows)}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()
    # None のときのみ sys.argv を読む ([] はテストからの明示的な空引数)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    try:
        cfg = _resolve_config(args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "inspect":
        return _run_inspect(args, cfg)
    try:
        if args.command == "template":
            return _run_template(args, cfg, logger)
        return _run_import(args, cfg, logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
