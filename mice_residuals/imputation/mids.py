"""
Multiply imputed dataset container

Holds the incomplete data together with the imputed values for every
imputation, in the same layout as a ``mids`` object from R's mice package:

- ``data``: incomplete data (imputed cells are NaN)
- ``where``: boolean mask of imputed cells
- ``imp``: per-variable DataFrame of imputed values (rows = imputed cells,
  columns = imputation numbers 1..m)
- ``m``, ``method``, ``iteration``, ``seed``: imputation bookkeeping

Completed datasets are rebuilt on demand with ``complete()``.
"""

import numpy as np
import pandas as pd
import structlog
from typing import Dict, List, Optional, Union

log = structlog.get_logger()

RESIDUAL_PREFIX = "residuals_"


def _cells_differ(first: pd.DataFrame, other: pd.DataFrame) -> pd.DataFrame:
    """Elementwise inequality where two missing values count as equal."""
    both_missing = first.isna() & other.isna()
    equal = (first == other) | both_missing
    return ~equal


def _check_same_layout(datasets: List[pd.DataFrame]) -> List[pd.DataFrame]:
    """
    Validate that all completed datasets share rows and columns

    Datasets whose columns are a permutation of the first dataset's columns
    are reordered to match it.
    """
    first = datasets[0]
    columns = list(first.columns)
    aligned = [first]

    for i, df in enumerate(datasets[1:], start=2):
        if set(df.columns) != set(columns):
            missing = sorted(set(columns) - set(df.columns))
            extra = sorted(set(df.columns) - set(columns))
            raise ValueError(
                f"Completed dataset {i} has different variables than dataset 1 "
                f"(missing: {missing}, extra: {extra})"
            )
        if len(df) != len(first) or not df.index.equals(first.index):
            raise ValueError(
                f"Completed dataset {i} has {len(df)} rows with a different row index "
                f"than dataset 1 ({len(first)} rows)"
            )
        aligned.append(df[columns])

    return aligned


class Mids:
    """
    Multiply imputed data set

    Parameters
    ----------
    data : pandas.DataFrame
        Incomplete data. Cells marked in ``where`` are ignored when completing.
    imp : dict of str -> pandas.DataFrame
        Imputed values per variable. Each frame has one row per imputed cell
        (in row order of ``data``) and columns ``1..m``.
    m : int
        Number of imputations
    where : pandas.DataFrame of bool, optional
        Mask of imputed cells. Defaults to ``data.isna()``.
    method : dict of str -> str, optional
        Imputation method per variable ("" when not imputed)
    iteration : int, default 0
        Number of iterations recorded for the imputation run
    seed : int, optional
        Random seed recorded for the imputation run
    """

    def __init__(
        self,
        data: pd.DataFrame,
        imp: Dict[str, pd.DataFrame],
        m: int,
        where: Optional[pd.DataFrame] = None,
        method: Optional[Dict[str, str]] = None,
        iteration: int = 0,
        seed: Optional[int] = None
    ):
        if not isinstance(data, pd.DataFrame):
            raise TypeError(f"data must be a pandas DataFrame, got {type(data).__name__}")
        if int(m) < 1:
            raise ValueError(f"m must be at least 1, got {m}")

        if where is None:
            where = data.isna()
        where = where.reindex(index=data.index, columns=data.columns, fill_value=False).astype(bool)

        self.data = data
        self.where = where
        self.m = int(m)
        self.method = {var: (method or {}).get(var, "") for var in data.columns}
        self.iteration = iteration
        self.seed = seed
        self.imp = {}

        for var in data.columns:
            rows = data.index[where[var].to_numpy()]
            values = imp.get(var)
            if values is None:
                if len(rows) > 0:
                    raise ValueError(f"Variable {var} has {len(rows)} imputed cells but no imputed values")
                values = pd.DataFrame(index=rows, columns=range(1, self.m + 1), dtype=float)
            if values.shape != (len(rows), self.m):
                raise ValueError(
                    f"Imputed values for {var} must have shape ({len(rows)}, {self.m}), "
                    f"got {values.shape}"
                )
            values = values.copy()
            values.index = rows
            values.columns = range(1, self.m + 1)
            self.imp[var] = values

    @classmethod
    def from_completed(
        cls,
        datasets: List[pd.DataFrame],
        seed: Optional[int] = None,
        iteration: int = 0,
        where: Optional[pd.DataFrame] = None,
        method: Optional[Dict[str, str]] = None
    ) -> "Mids":
        """
        Pack a list of completed datasets into a Mids

        A cell is stored as imputed when its value differs between any two
        datasets, or when the optional ``where`` mask marks it. All other
        cells are kept in ``data`` as observed values.

        Parameters
        ----------
        datasets : list of pandas.DataFrame
            Completed datasets, one per imputation, sharing rows and columns
        seed : int, optional
            Seed recorded on the result
        iteration : int, default 0
            Iteration count recorded on the result
        where : pandas.DataFrame of bool, optional
            Cells to mark as imputed regardless of their values (e.g. the
            original missingness pattern). Labels not in the datasets are ignored.
        method : dict, optional
            Imputation method per variable

        Returns
        -------
        Mids
        """
        if not isinstance(datasets, (list, tuple)) or len(datasets) == 0:
            raise ValueError("datasets must be a non-empty list of DataFrames")
        for i, df in enumerate(datasets, start=1):
            if not isinstance(df, pd.DataFrame):
                raise TypeError(f"Completed dataset {i} must be a pandas DataFrame, got {type(df).__name__}")

        datasets = _check_same_layout(list(datasets))
        first = datasets[0]

        varying = pd.DataFrame(False, index=first.index, columns=first.columns)
        for other in datasets[1:]:
            varying |= _cells_differ(first, other)

        if where is not None:
            hint = where.reindex(index=first.index, columns=first.columns, fill_value=False)
            varying |= hint.astype(bool)

        data = first.mask(varying)
        imp = {}
        for var in first.columns:
            mask = varying[var].to_numpy()
            imp[var] = pd.DataFrame(
                {k: df[var].to_numpy()[mask] for k, df in enumerate(datasets, start=1)},
                index=first.index[mask]
            )

        log.debug(
            "Packed completed datasets",
            m=len(datasets),
            rows=len(first),
            variables=len(first.columns),
            imputed_cells=int(varying.to_numpy().sum())
        )

        return cls(
            data=data,
            imp=imp,
            m=len(datasets),
            where=varying,
            method=method,
            iteration=iteration,
            seed=seed
        )

    @property
    def variables(self) -> List[str]:
        return list(self.data.columns)

    @property
    def nmis(self) -> pd.Series:
        """Number of imputed cells per variable"""
        return self.where.sum().astype(int)

    @property
    def imputed_variables(self) -> List[str]:
        nmis = self.nmis
        return [var for var in self.variables if nmis[var] > 0]

    @property
    def residual_variables(self) -> List[str]:
        """Variables added as model residuals (``residuals_`` prefix)"""
        return [var for var in self.variables if str(var).startswith(RESIDUAL_PREFIX)]

    def _complete_one(self, k: int) -> pd.DataFrame:
        completed = self.data.copy()
        for var, values in self.imp.items():
            if values.empty:
                continue
            mask = self.where[var].to_numpy()
            filled = completed[var].to_numpy().copy()
            imputed = values[k].to_numpy()
            if not np.can_cast(imputed.dtype, filled.dtype, casting="same_kind"):
                filled = filled.astype(np.result_type(filled.dtype, imputed.dtype))
            filled[mask] = imputed
            # Integer and boolean columns were widened to float to hold NaN
            if imputed.dtype.kind in "iub" and filled.dtype.kind == "f" and not np.isnan(filled).any():
                narrowed = filled.astype(imputed.dtype)
                if np.array_equal(narrowed, filled):
                    filled = narrowed
            completed[var] = filled
        return completed

    def complete(
        self,
        action: Union[int, str] = 1,
        include: bool = False
    ) -> Union[pd.DataFrame, List[pd.DataFrame]]:
        """
        Extract completed data

        Parameters
        ----------
        action : int or str, default 1
            - ``k`` (1..m): completed dataset for imputation k
            - ``0``: the incomplete data
            - ``"all"``: list of the m completed datasets
            - ``"long"``: all datasets stacked with ``imputation_m`` and
              ``row_id`` columns
        include : bool, default False
            For "all" and "long", also include the incomplete data as
            imputation 0

        Returns
        -------
        pandas.DataFrame or list of pandas.DataFrame

        Examples
        --------
        >>> df = mids.complete(2)
        >>> datasets = mids.complete("all")
        >>> long = mids.complete("long")
        >>> long.groupby('imputation_m')['chl'].mean()
        """
        if isinstance(action, str):
            start = 0 if include else 1
            if action == "all":
                return [self.complete(k) for k in range(start, self.m + 1)]
            if action == "long":
                frames = []
                for k in range(start, self.m + 1):
                    df = self.complete(k)
                    df.insert(0, "row_id", df.index)
                    df.insert(0, "imputation_m", k)
                    frames.append(df)
                return pd.concat(frames, ignore_index=True)
            raise ValueError(f"Unsupported action '{action}'. Use an integer, 'all' or 'long'")

        if isinstance(action, bool) or not isinstance(action, int):
            raise ValueError(f"action must be an integer or 'all'/'long', got {action!r}")
        if action == 0:
            return self.data.copy()
        if action < 0 or action > self.m:
            raise ValueError(f"action must be between 0 and {self.m}, got {action}")
        return self._complete_one(action)

    def copy(self) -> "Mids":
        return Mids(
            data=self.data.copy(),
            imp={var: values.copy() for var, values in self.imp.items()},
            m=self.m,
            where=self.where.copy(),
            method=dict(self.method),
            iteration=self.iteration,
            seed=self.seed
        )

    def summary(self) -> str:
        """Text summary of the imputation and any residual variables"""
        nmis = self.nmis
        width = max([len(str(var)) for var in self.variables] + [8])
        lines = [
            "Class: Mids",
            f"Number of multiple imputations:  {self.m}",
            f"Rows: {len(self.data)}  Iterations: {self.iteration}  Seed: {self.seed}",
            "",
            f"{'variable'.ljust(width)}  {'method'.ljust(10)}  nmis",
        ]
        for var in self.variables:
            lines.append(f"{str(var).ljust(width)}  {(self.method[var] or '-').ljust(10)}  {nmis[var]}")

        residual_vars = self.residual_variables
        if residual_vars:
            lines.append("")
            lines.append("Residual variables added by mice-residuals:")
            for var in residual_vars:
                lines.append(f"  - {var}")

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return (
            f"<Mids m={self.m} rows={len(self.data)} variables={len(self.data.columns)} "
            f"iteration={self.iteration} seed={self.seed}>"
        )


def complete(
    mids: Mids,
    action: Union[int, str] = 1,
    include: bool = False
) -> Union[pd.DataFrame, List[pd.DataFrame]]:
    """
    Extract completed data from a Mids (see ``Mids.complete``)

    Examples
    --------
    >>> completed = complete(imp_data, "all")
    >>> len(completed) == imp_data.m
    True
    """
    if not isinstance(mids, Mids):
        raise TypeError("mids must be a mids object (Mids)")
    return mids.complete(action, include=include)
