"""
Repeated analyses over multiply imputed data

``with_imputations()`` fits the same model to every completed dataset of a
Mids and collects the fits in a ``Mira`` (multiply imputed repeated
analyses), the Python counterpart of ``with(imp, glm(...))`` in R's mice.
"""

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
import structlog
from typing import Any, Callable, List, Optional, Union

from .mids import Mids

log = structlog.get_logger()

# Attributes tried, in order, for each residual type
RESIDUAL_ATTRIBUTES = {
    "working": ("resid_working", "resid", "residuals"),
    "response": ("resid_response", "resid", "residuals"),
    "pearson": ("resid_pearson",),
    "deviance": ("resid_deviance",),
}


class Mira:
    """
    Fitted models, one per imputation

    Parameters
    ----------
    analyses : list
        Fitted model objects, in imputation order
    formula : str, optional
        Model formula, when the models were fit from a formula
    call : str, optional
        Description of the fitting call, e.g. "glm(chl ~ age, family=Gaussian)"
        or the qualified name of a fitting function
    """

    def __init__(self, analyses: List[Any], formula: Optional[str] = None, call: Optional[str] = None):
        self.analyses = list(analyses)
        self.formula = formula
        self.call = call

    @property
    def m(self) -> int:
        return len(self.analyses)

    def __len__(self) -> int:
        return len(self.analyses)

    def __iter__(self):
        return iter(self.analyses)

    def __repr__(self) -> str:
        formula = f" formula='{self.formula}'" if self.formula else ""
        return f"<Mira analyses={len(self.analyses)}{formula}>"


def fit_glm(formula: str, data: pd.DataFrame, family=None, **fit_kwds):
    """Fit a GLM from a formula (Gaussian family by default)"""
    if family is None:
        family = sm.families.Gaussian()
    return smf.glm(formula, data=data, family=family).fit(**fit_kwds)


def with_imputations(
    mids: Mids,
    model: Union[str, Callable[[pd.DataFrame], Any]],
    family=None,
    **fit_kwds
) -> Mira:
    """
    Fit a model to each completed dataset

    Parameters
    ----------
    mids : Mids
        Multiply imputed data
    model : str or callable
        A formula (fit as a statsmodels GLM) or a function that takes a
        completed DataFrame and returns a fitted model
    family : statsmodels family, optional
        GLM family for formula models (default Gaussian)
    **fit_kwds
        Passed to ``GLM.fit()`` for formula models

    Returns
    -------
    Mira
        One fitted model per imputation

    Examples
    --------
    >>> fits = with_imputations(imp_data, "chl ~ age + bmi")
    >>> spline_fits = with_imputations(
    ...     imp_data, lambda df: smf.ols("chl ~ cr(bmi, df=4)", data=df).fit()
    ... )
    """
    if not isinstance(mids, Mids):
        raise TypeError("mids must be a mids object (Mids)")

    if isinstance(model, str):
        formula = model
        family_name = type(family).__name__ if family is not None else "Gaussian"
        call = f"glm({formula}, family={family_name})"

        def fit(df):
            return fit_glm(formula, df, family=family, **fit_kwds)
    elif callable(model):
        formula = None
        call = getattr(model, "__qualname__", None) or repr(model)
        fit = model
    else:
        raise TypeError(
            f"model must be a formula string or a callable, got {type(model).__name__}"
        )

    analyses = []
    for k, df in enumerate(mids.complete("all"), start=1):
        log.debug("Fitting model", imputation=k, formula=formula)
        analyses.append(fit(df))

    return Mira(analyses, formula=formula, call=call)


def extract_residuals(fit: Any, index: pd.Index, kind: str = "working") -> np.ndarray:
    """
    Residuals of a fitted model aligned to a dataset's rows

    Parameters
    ----------
    fit : fitted model
        statsmodels results (GLM, OLS, ...) or any object with a
        ``residuals`` attribute
    index : pandas.Index
        Row index of the dataset the model was fit to
    kind : str, default "working"
        Residual type: "working", "response", "pearson" or "deviance".
        For Gaussian identity models working and response residuals agree.

    Returns
    -------
    numpy.ndarray
        One residual per row; rows dropped by the model get NaN
    """
    if kind not in RESIDUAL_ATTRIBUTES:
        raise ValueError(
            f"kind must be one of {', '.join(RESIDUAL_ATTRIBUTES)}, got '{kind}'"
        )

    resid = None
    for attr in RESIDUAL_ATTRIBUTES[kind]:
        if hasattr(fit, attr):
            resid = getattr(fit, attr)
            break
    if resid is None:
        raise TypeError(f"Cannot extract {kind} residuals from {type(fit).__name__}")

    if isinstance(resid, pd.Series) and resid.index.isin(index).all():
        values = resid.reindex(index).to_numpy(dtype=float)
        dropped = int(np.isnan(values).sum() - np.isnan(resid.to_numpy(dtype=float)).sum())
        if dropped > 0:
            log.warning("Model dropped rows, residuals set to NaN", rows=dropped)
        return values

    values = np.asarray(resid, dtype=float)
    if values.shape != (len(index),):
        raise ValueError(
            f"Residual vector has length {values.size}, expected {len(index)} (one per row)"
        )
    return values
