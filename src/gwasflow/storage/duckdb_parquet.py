"""DuckDB + Parquet storage backend for the phenotype matrix."""

from __future__ import annotations

import csv
import logging
import re
from pathlib import Path

import pandas as pd

from gwasflow.models import Artifact
from gwasflow.schema import TAB
from gwasflow.storage.base import MatrixStorage

try:
    import duckdb
except ImportError:  # pragma: no cover - exercised only when dependency missing
    duckdb = None

logger = logging.getLogger("gwasflow.storage")

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DuckDBParquetMatrixStorage(MatrixStorage):
    """Persist the matrix in a queryable DB table and a portable Parquet file."""

    def __init__(
        self,
        *,
        db_path: str | Path,
        parquet_path: str | Path,
        table_name: str = "phenome_matrix",
    ) -> None:
        if not _TABLE_RE.match(table_name):
            raise ValueError(f"Unsafe table name: {table_name}")

        self.db_path = Path(db_path)
        self.parquet_path = Path(parquet_path)
        self.table_name = table_name

    def persist(self, matrix: Artifact | str | Path) -> int:
        source = matrix.path if isinstance(matrix, Artifact) else Path(matrix)
        frame = pd.read_csv(
            source,
            sep=TAB,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
        )
        if frame.empty:
            logger.info("Phenotype matrix %s has no rows; nothing to store", source)
            return 0

        if duckdb is None:
            raise RuntimeError(
                "duckdb is not installed. Add it to requirements before storing the phenotype matrix."
            )

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.parquet_path.parent.mkdir(parents=True, exist_ok=True)

        connection = duckdb.connect(str(self.db_path))
        try:
            connection.register("phenome_frame", frame)
            connection.execute(
                f"CREATE OR REPLACE TABLE {self.table_name} AS SELECT * FROM phenome_frame"
            )

            if self.parquet_path.exists():
                self.parquet_path.unlink()

            parquet_target = self.parquet_path.as_posix().replace("'", "''")
            connection.execute(
                f"COPY {self.table_name} TO '{parquet_target}' (FORMAT PARQUET)"
            )
        finally:
            connection.close()

        logger.info("Stored %d matrix rows in %s:%s", len(frame), self.db_path, self.table_name)
        return len(frame)
