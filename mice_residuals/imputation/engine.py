"""
Multiple imputation by chained equations

Builds a Mids from an incomplete DataFrame using statsmodels' MICEData
(predictive mean matching with Gaussian perturbation of the conditional
model parameters). Each imputation comes from an independent chain.
"""

import numpy as np
import pandas as pd
import structlog
from statsmodels.imputation.mice import MICEData
from typing import Optional

from .mids import Mids

log = structlog.get_logger()


def _check_imputable(data: pd.DataFrame) -> None:
    non_numeric = [
        col for col in data.columns
        if not pd.api.types.is_numeric_dtype(data[col]) or pd.api.types.is_bool_dtype(data[col])
    ]
    if non_numeric:
        raise ValueError(
            f"All variables must be numeric for chained-equation imputation; "
            f"non-numeric: {', '.join(map(str, non_numeric))}"
        )

    all_missing_rows = int(data.isna().all(axis=1).sum())
    if all_missing_rows > 0:
        raise ValueError(f"{all_missing_rows} rows have every variable missing")

    all_missing_cols = [col for col in data.columns if data[col].isna().all()]
    if all_missing_cols:
        raise ValueError(
            f"Variables with no observed values cannot be imputed: "
            f"{', '.join(map(str, all_missing_cols))}"
        )


def impute(
    data: pd.DataFrame,
    m: int = 5,
    maxit: int = 5,
    seed: Optional[int] = None,
    k_pmm: int = 20
) -> Mids:
    """
    Generate M imputations of the missing values in a DataFrame

    Parameters
    ----------
    data : pandas.DataFrame
        Incomplete numeric data
    m : int, default 5
        Number of imputations
    maxit : int, default 5
        Chained-equation cycles per imputation
    seed : int, optional
        Seed of the random generator shared by all chains
    k_pmm : int, default 20
        Donor pool size for predictive mean matching

    Returns
    -------
    Mids
        Incomplete data plus the M sets of imputed values

    Examples
    --------
    >>> imp_data = impute(nhanes, m=3, seed=123)
    >>> imp_data.nmis['chl']
    10
    """
    if not isinstance(data, pd.DataFrame):
        raise TypeError(f"data must be a pandas DataFrame, got {type(data).__name__}")
    if m < 1:
        raise ValueError(f"m must be at least 1, got {m}")
    if maxit < 1:
        raise ValueError(f"maxit must be at least 1, got {maxit}")

    _check_imputable(data)

    where = data.isna()
    incomplete = [col for col in data.columns if where[col].any()]
    method = {col: ("pmm" if col in incomplete else "") for col in data.columns}

    log.info(
        "Starting imputation",
        m=m,
        maxit=maxit,
        seed=seed,
        rows=len(data),
        incomplete_variables=incomplete
    )

    imputed_values = {col: {} for col in incomplete}

    if incomplete:
        # MICEData needs string column labels and a positional index
        work = data.astype(float).reset_index(drop=True)
        work.columns = pd.Index([str(col) for col in data.columns], dtype=object)

        # One generator shared by every chain
        rng = np.random.default_rng(seed)
        for k in range(1, m + 1):
            chain = MICEData(work, k_pmm=k_pmm, rng=rng)
            chain.update_all(n_iter=maxit)
            for col in incomplete:
                positions = np.flatnonzero(where[col].to_numpy())
                imputed_values[col][k] = chain.data[str(col)].to_numpy()[positions]
            log.debug("Imputation complete", imputation=k)

    imp = {
        col: pd.DataFrame(values, index=data.index[where[col].to_numpy()])
        for col, values in imputed_values.items()
    }

    log.info("Imputation finished", m=m, imputed_cells=int(where.to_numpy().sum()))

    return Mids(
        data=data.copy(),
        imp=imp,
        m=m,
        where=where,
        method=method,
        iteration=maxit,
        seed=seed
    )
