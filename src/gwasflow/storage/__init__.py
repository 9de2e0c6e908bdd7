"""Storage backends for the final phenotype matrix."""

from .base import MatrixStorage
from .duckdb_parquet import DuckDBParquetMatrixStorage

__all__ = ["DuckDBParquetMatrixStorage", "MatrixStorage"]
