"""
DuckDB storage for multiply imputed datasets.

A Mids is stored in long format under a table prefix:

- ``<prefix>_data``: incomplete data, one row per observation (``row_id``)
- ``<prefix>_imp_<variable>``: imputed values of one variable
  (``row_id``, ``imputation_m``, value); only imputed cells are stored
- ``<prefix>_metadata``: one row per variable with method, nmis, m,
  iteration and seed

Row labels are not stored; loaded datasets use a 0..n-1 index.
"""

from contextlib import contextmanager

import numpy as np
import pandas as pd
from typing import List, Optional

from ..imputation.mids import Mids
from ..utils.logging import PerformanceLogger, error_context, get_logger, with_logging
from .connection import DatabaseManager

METADATA_SUFFIX = "_metadata"
IMPUTED_INFIX = "_imp_"
RESERVED_COLUMNS = ("row_id", "imputation_m")


def _quote(identifier: str) -> str:
    return '"' + str(identifier).replace('"', '""') + '"'


class MidsStore:
    """
    Save and load Mids objects in a DuckDB database.

    Examples
    --------
    >>> store = MidsStore(DatabaseManager("data/duckdb/residuals.duckdb"))
    >>> store.save(result, "study_residuals")
    >>> restored = store.load("study_residuals")
    >>> df = store.get_completed_dataset("study_residuals", imputation_m=2)
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or DatabaseManager()
        self.logger = get_logger("db.store")

    def _write_table(self, conn, df: pd.DataFrame, table_name: str) -> None:
        conn.execute(f"DROP TABLE IF EXISTS {_quote(table_name)}")
        conn.register("temp_df", df)
        try:
            conn.execute(f"CREATE TABLE {_quote(table_name)} AS SELECT * FROM temp_df")
        finally:
            conn.unregister("temp_df")

    def _variable_table(self, table_prefix: str, var: str) -> str:
        return f"{table_prefix}{IMPUTED_INFIX}{var}"

    @with_logging("save_mids", logger_name="db.store")
    def save(self, mids: Mids, table_prefix: str, if_exists: str = "replace") -> List[str]:
        """
        Store a Mids under a table prefix.

        Args:
            mids: Multiply imputed data
            table_prefix: Prefix of the created tables
            if_exists: 'replace' drops existing tables, 'fail' raises

        Returns:
            Names of the tables written
        """
        if not isinstance(mids, Mids):
            raise TypeError("mids must be a mids object (Mids)")
        if if_exists not in ["replace", "fail"]:
            raise ValueError("if_exists must be 'replace' or 'fail'")
        reserved = [var for var in mids.variables if var in RESERVED_COLUMNS]
        if reserved:
            raise ValueError(
                f"Variables named {', '.join(reserved)} clash with storage columns and cannot be saved"
            )

        replacing = self.exists(table_prefix)
        if if_exists == "fail" and replacing:
            raise ValueError(f"Tables with prefix {table_prefix} already exist")

        nmis = mids.nmis
        variables = mids.variables

        data = mids.data.reset_index(drop=True)
        data.insert(0, "row_id", np.arange(len(data)))

        metadata = pd.DataFrame({
            'variable': [str(var) for var in variables],
            'position': np.arange(len(variables)),
            'method': [mids.method[var] for var in variables],
            'nmis': [int(nmis[var]) for var in variables],
            'm': mids.m,
            'iteration': mids.iteration,
            'seed': pd.array([mids.seed] * len(variables), dtype="Int64"),
        })

        written = []
        with self.db_manager.get_connection() as conn:
            with error_context(self.logger, "mids_save", table_prefix=table_prefix, m=mids.m), \
                    self._transaction(conn):
                if replacing:
                    self._drop_tables(conn, table_prefix)

                self._write_table(conn, data, f"{table_prefix}_data")
                written.append(f"{table_prefix}_data")

                with PerformanceLogger(self.logger, f"imputed_tables_{table_prefix}"):
                    for var in mids.imputed_variables:
                        positions = np.flatnonzero(mids.where[var].to_numpy())
                        values = mids.imp[var]
                        long = pd.DataFrame({
                            'row_id': np.tile(positions, mids.m),
                            'imputation_m': np.repeat(np.arange(1, mids.m + 1), len(positions)),
                            var: np.concatenate([values[k].to_numpy() for k in range(1, mids.m + 1)]),
                        })
                        table_name = self._variable_table(table_prefix, var)
                        self._write_table(conn, long, table_name)
                        written.append(table_name)

                self._write_table(conn, metadata, f"{table_prefix}{METADATA_SUFFIX}")
                written.append(f"{table_prefix}{METADATA_SUFFIX}")

        self.logger.info(
            f"Stored mids under {table_prefix}: {len(written)} tables",
            extra={"table_prefix": table_prefix, "tables": written}
        )
        return written

    def _read_metadata(self, conn, table_prefix: str) -> pd.DataFrame:
        return conn.execute(
            f"SELECT * FROM {_quote(table_prefix + METADATA_SUFFIX)} ORDER BY position"
        ).df()

    def _require(self, table_prefix: str) -> None:
        if not self.exists(table_prefix):
            raise ValueError(f"No stored mids found with table prefix: {table_prefix}")

    @with_logging("load_mids", logger_name="db.store")
    def load(self, table_prefix: str) -> Mids:
        """
        Rebuild a stored Mids.

        Args:
            table_prefix: Prefix used when saving

        Returns:
            Mids with the stored imputations and metadata
        """
        self._require(table_prefix)

        with self.db_manager.get_connection(read_only=True) as conn:
            metadata = self._read_metadata(conn, table_prefix)
            data = conn.execute(
                f"SELECT * FROM {_quote(table_prefix + '_data')} ORDER BY row_id"
            ).df()

            variables = metadata['variable'].tolist()
            data = data.drop(columns=['row_id']).reset_index(drop=True)[variables]
            m = int(metadata['m'].iloc[0])

            where = pd.DataFrame(False, index=data.index, columns=data.columns)
            imp = {}
            for row in metadata.itertuples(index=False):
                if row.nmis == 0:
                    continue
                long = conn.execute(
                    f"SELECT row_id, imputation_m, {_quote(row.variable)} "
                    f"FROM {_quote(self._variable_table(table_prefix, row.variable))} "
                    f"ORDER BY imputation_m, row_id"
                ).df()
                wide = long.pivot(index='row_id', columns='imputation_m', values=row.variable).sort_index()
                where.loc[wide.index.to_numpy(), row.variable] = True
                imp[row.variable] = wide

        seed = metadata['seed'].iloc[0]
        return Mids(
            data=data,
            imp=imp,
            m=m,
            where=where,
            method=dict(zip(metadata['variable'], metadata['method'])),
            iteration=int(metadata['iteration'].iloc[0]),
            seed=None if pd.isna(seed) else int(seed)
        )

    def get_completed_dataset(self, table_prefix: str, imputation_m: int) -> pd.DataFrame:
        """
        Construct one completed dataset from stored tables.

        Args:
            table_prefix: Prefix used when saving
            imputation_m: Which imputation to retrieve (1 to M)

        Returns:
            Completed dataset with observed + imputed values
        """
        self._require(table_prefix)

        with self.db_manager.get_connection(read_only=True) as conn:
            metadata = self._read_metadata(conn, table_prefix)
            max_m = int(metadata['m'].iloc[0])
            if imputation_m < 1 or imputation_m > max_m:
                raise ValueError(
                    f"imputation_m must be between 1 and {max_m}, got {imputation_m}"
                )

            base = conn.execute(
                f"SELECT * FROM {_quote(table_prefix + '_data')} ORDER BY row_id"
            ).df()

            for row in metadata.itertuples(index=False):
                if row.nmis == 0:
                    continue
                imputed = conn.execute(
                    f"SELECT row_id, {_quote(row.variable)} AS value "
                    f"FROM {_quote(self._variable_table(table_prefix, row.variable))} "
                    f"WHERE imputation_m = ?",
                    [imputation_m]
                ).df()

                # Coalesce: imputed value where available, else observed
                values = base[row.variable].astype(object) if imputed['value'].dtype == object \
                    else base[row.variable].astype(float)
                values.iloc[imputed['row_id'].to_numpy()] = imputed['value'].to_numpy()
                base[row.variable] = values

        return base.drop(columns=['row_id'])[metadata['variable'].tolist()]

    def exists(self, table_prefix: str) -> bool:
        return self.db_manager.table_exists(f"{table_prefix}{METADATA_SUFFIX}")

    def list_stored(self) -> List[str]:
        """Table prefixes of all stored mids objects"""
        prefixes = [
            table[:-len(METADATA_SUFFIX)]
            for table in self.db_manager.list_tables()
            if table.endswith(METADATA_SUFFIX)
        ]
        # "<p>_imp_metadata" holds a variable named "metadata", not a stored mids
        return [
            prefix for prefix in prefixes
            if not any(
                f"{prefix}{METADATA_SUFFIX}".startswith(f"{other}{IMPUTED_INFIX}")
                for other in prefixes if other != prefix
            )
        ]

    def _drop_tables(self, conn, table_prefix: str) -> None:
        metadata = self._read_metadata(conn, table_prefix)
        tables = [self._variable_table(table_prefix, var) for var in metadata['variable']]
        tables += [f"{table_prefix}_data", f"{table_prefix}{METADATA_SUFFIX}"]
        for table in tables:
            conn.execute(f"DROP TABLE IF EXISTS {_quote(table)}")

    @contextmanager
    def _transaction(self, conn):
        conn.execute("BEGIN TRANSACTION")
        try:
            yield
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def delete(self, table_prefix: str) -> None:
        """Drop every table of a stored mids"""
        self._require(table_prefix)
        with self.db_manager.get_connection() as conn, self._transaction(conn):
            self._drop_tables(conn, table_prefix)
        self.logger.info(f"Deleted stored mids {table_prefix}")
