from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""DB batch write helpers built on psycopg2.extras.execute_values.

Every bulk statement of the pipeline (member insert, profile upsert, header
update) goes through `execute_batch` so that timing instrumentation and error
wrapping are uniform. Table and column names are module constants of the
caller, never user input.
"""


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch statement."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def execute_batch(
    cursor: Any,
    sql: str,
    rows: Iterable[Sequence[Any]],
    *,
    template: str | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Run one `VALUES %s` statement over all rows.

    Parameters
    ----------
    cursor: psycopg2 cursor
    sql: statement containing a single ``VALUES %s`` placeholder
    rows: 行シーケンス
    template: optional execute_values row template (e.g. with casts)
    page_size: execute_values の page_size
    metrics_callback: receives BatchMetrics; not invoked for empty input
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, template=template, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    on_conflict: str | None = None,
    template: str | None = None,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名
    columns: 挿入列
    rows: 行シーケンス
    page_size: execute_values の page_size (性能調整)
    on_conflict: optional ``ON CONFLICT ...`` clause turning the insert into an upsert
    template: optional execute_values row template
    metrics_callback: Optional callback to receive BatchMetrics
    """
    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if on_conflict:
        sql += f" {on_conflict}"
    return execute_batch(
        cursor,
        sql,
        rows,
        template=template,
        page_size=page_size,
        metrics_callback=metrics_callback,
    )
