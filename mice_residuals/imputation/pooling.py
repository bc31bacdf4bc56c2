"""
Pooling of repeated analyses with Rubin's rules

Degrees of freedom follow Barnard & Rubin (1999), as in mice::pool().
"""

import numpy as np
import pandas as pd
import structlog
from scipy import stats
from typing import Optional

from .mira import Mira

log = structlog.get_logger()


def _as_series(values, name: str) -> pd.Series:
    if isinstance(values, pd.Series):
        return values
    values = np.asarray(values, dtype=float)
    return pd.Series(values, index=[f"x{i}" for i in range(len(values))], name=name)


def pool(fits: Mira, dfcom: Optional[float] = None) -> pd.DataFrame:
    """
    Combine estimates across imputations

    Parameters
    ----------
    fits : Mira
        Fitted models (need ``params``, ``bse`` and ``df_resid``)
    dfcom : float, optional
        Complete-data degrees of freedom. Defaults to the residual degrees
        of freedom of the first analysis.

    Returns
    -------
    pandas.DataFrame
        One row per term with columns estimate, ubar, b, t, dfcom, df, riv,
        lambda, fmi, std_error, statistic, p_value

    Examples
    --------
    >>> fits = with_imputations(result, "chl ~ residuals_baseline")
    >>> pooled = pool(fits)
    >>> pooled.loc['residuals_baseline', ['estimate', 'std_error', 'p_value']]
    """
    if not isinstance(fits, Mira):
        raise TypeError("fits must be fitted with with_imputations() (Mira)")
    m = len(fits.analyses)
    if m < 2:
        raise ValueError(f"Pooling requires at least 2 imputations, got {m}")

    estimates = pd.concat(
        [_as_series(fit.params, "params") for fit in fits.analyses], axis=1
    ).T
    variances = pd.concat(
        [_as_series(fit.bse, "bse") ** 2 for fit in fits.analyses], axis=1
    ).T

    if dfcom is None:
        dfcom = float(getattr(fits.analyses[0], "df_resid", np.inf))

    qbar = estimates.mean(axis=0)
    ubar = variances.mean(axis=0)
    b = estimates.var(axis=0, ddof=1)
    t = ubar + (1 + 1 / m) * b
    riv = (1 + 1 / m) * b / ubar
    lam = (1 + 1 / m) * b / t

    with np.errstate(divide="ignore", invalid="ignore"):
        dfold = ((m - 1) / lam ** 2).to_numpy(dtype=float)
        if np.isinf(dfcom):
            df = dfold
        else:
            dfobs = ((dfcom + 1) / (dfcom + 3) * dfcom * (1 - lam)).to_numpy(dtype=float)
            df = np.where(np.isinf(dfold), dfobs, dfold * dfobs / (dfold + dfobs))
    df = pd.Series(df, index=qbar.index)
    fmi = (riv + 2 / (df + 3)) / (riv + 1)

    std_error = np.sqrt(t)
    statistic = qbar / std_error
    p_value = 2 * stats.t.sf(np.abs(statistic), df)

    log.debug("Pooled estimates", m=m, terms=len(qbar), dfcom=dfcom)

    return pd.DataFrame({
        "estimate": qbar,
        "ubar": ubar,
        "b": b,
        "t": t,
        "dfcom": dfcom,
        "df": df,
        "riv": riv,
        "lambda": lam,
        "fmi": fmi,
        "std_error": std_error,
        "statistic": statistic,
        "p_value": p_value,
    })
