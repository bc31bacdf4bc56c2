"""
Attach model residuals to multiply imputed data

Restricted cubic spline (RCS) models cannot be fit jointly across multiply
imputed datasets. The workaround implemented here:

1. Extract the completed datasets from a Mids
2. Add the residuals of per-imputation models as new variables
3. Repack the datasets into a Mids, keeping the imputation metadata

The resulting Mids can be analysed with ``with_imputations()`` and pooled
with ``pool()`` like any other.
"""

import re
import pandas as pd
import structlog
from typing import Dict, List, Optional

from .helpers import check_variables_exist, validate_model_list
from .mids import Mids, RESIDUAL_PREFIX
from .mira import Mira, extract_residuals, with_imputations

log = structlog.get_logger()

DEFAULT_SEED = 10000
DEFAULT_MAX_ITER = 50


def add_residuals_to_mice(
    mice_object: Mids,
    models: Dict[str, Mira],
    seed: int = DEFAULT_SEED,
    max_iter: int = DEFAULT_MAX_ITER,
    prefix: str = RESIDUAL_PREFIX,
    kind: str = "working"
) -> Mids:
    """
    Add model residuals to multiply imputed datasets

    Parameters
    ----------
    mice_object : Mids
        Multiply imputed data
    models : dict of str -> Mira
        Models fitted with ``with_imputations()`` on ``mice_object``. Names
        become suffixes of the residual variables (``residuals_<name>``).
    seed : int, default 10000
        Seed recorded on the result
    max_iter : int, default 50
        Iteration count recorded on the result
    prefix : str, default "residuals_"
        Prefix of the residual variable names
    kind : str, default "working"
        Residual type passed to ``extract_residuals()``

    Returns
    -------
    Mids
        Same imputations with one residual variable per model

    Examples
    --------
    >>> models = {
    ...     "exp": with_imputations(imp_data, "outcome ~ predictor1 + predictor2"),
    ...     "exp_mj": with_imputations(imp_data, "outcome ~ marijuana + predictor1 + predictor2"),
    ... }
    >>> result = add_residuals_to_mice(imp_data, models, seed=12345)
    >>> pooled = pool(with_imputations(result, "new_outcome ~ residuals_exp"))
    """
    if not isinstance(mice_object, Mids):
        raise TypeError("mice_object must be a mids object (Mids)")
    validate_model_list(models, require_models=True)

    m = mice_object.m

    log.info("Extracting completed datasets", m=m)
    completed_data = mice_object.complete("all")

    log.info("Adding residuals from models", models=list(models))
    for model_name, model in models.items():
        resid_var_name = f"{prefix}{model_name}"
        log.info("Processing model", model=model_name, variable=resid_var_name)

        if len(model.analyses) < m:
            raise ValueError(
                f"Model {model_name} has fewer analyses than imputations in mice_object "
                f"({len(model.analyses)} < {m})"
            )
        if resid_var_name in mice_object.variables:
            log.warning("Overwriting existing variable", variable=resid_var_name)

        for i in range(m):
            df = completed_data[i]
            df[resid_var_name] = extract_residuals(model.analyses[i], df.index, kind=kind)

    log.info("Creating new mids structure")
    result = repack_mice_with_residuals(
        completed_data,
        seed=seed,
        max_iter=max_iter,
        where=mice_object.where,
        method=mice_object.method
    )

    log.info(
        "Successfully added residuals to mids object",
        residual_variables=result.residual_variables
    )
    return result


def build_exposure_models(
    mice_object: Mids,
    outcome_vars: List[str],
    base_predictors: List[str],
    marijuana_var: Optional[str] = None,
    family=None
) -> Dict[str, Mira]:
    """
    Build exposure models for each outcome

    For every outcome a base model ``outcome ~ predictors`` is fit, and when
    ``marijuana_var`` is given, a second model with the exposure added.

    Parameters
    ----------
    mice_object : Mids
        Multiply imputed data
    outcome_vars : list of str
        Outcome variable names
    base_predictors : list of str
        Predictors included in every model
    marijuana_var : str, optional
        Marijuana exposure variable
    family : statsmodels family, optional
        GLM family (default Gaussian)

    Returns
    -------
    dict of str -> Mira
        Keys ``<outcome>_base`` and ``<outcome>_mj``, with non-alphanumeric
        characters in the outcome name replaced by "_"

    Examples
    --------
    >>> models = build_exposure_models(
    ...     imp_data,
    ...     outcome_vars=["meancountsM", "AGG5_PGE15000M"],
    ...     base_predictors=["AirNicotineugm3", "cig7new", "cigar7new", "pipe7new"],
    ...     marijuana_var="mj7yes",
    ... )
    >>> list(models)
    ['meancountsM_base', 'meancountsM_mj', 'AGG5_PGE15000M_base', 'AGG5_PGE15000M_mj']
    """
    if not isinstance(mice_object, Mids):
        raise TypeError("mice_object must be a mids object (Mids)")

    models = {}
    base_formula_str = " + ".join(base_predictors)

    for outcome in outcome_vars:
        safe_outcome = re.sub(r"[^A-Za-z0-9]", "_", outcome)

        formula_base = f"{outcome} ~ {base_formula_str}"
        log.info("Fitting exposure model", model=f"{safe_outcome}_base", formula=formula_base)
        models[f"{safe_outcome}_base"] = with_imputations(mice_object, formula_base, family=family)

        if marijuana_var is not None:
            formula_mj = f"{outcome} ~ {marijuana_var} + {base_formula_str}"
            log.info("Fitting exposure model", model=f"{safe_outcome}_mj", formula=formula_mj)
            models[f"{safe_outcome}_mj"] = with_imputations(mice_object, formula_mj, family=family)

    return models


def calculate_residual_differences(
    mice_object: Mids,
    model1_residuals: str,
    model2_residuals: str,
    new_var_name: str
) -> Mids:
    """
    Difference between the residuals of two models

    Useful for isolating the effect of a specific variable (e.g. marijuana
    exposure) by comparing models with and without it.

    Parameters
    ----------
    mice_object : Mids
        Multiply imputed data with residual variables already added
    model1_residuals : str
        First residual variable
    model2_residuals : str
        Second residual variable
    new_var_name : str
        Name of the difference variable (``model1 - model2``)

    Returns
    -------
    Mids
        Repacked data with the difference variable, keeping the input's
        seed and iteration count

    Examples
    --------
    >>> result = calculate_residual_differences(
    ...     result, "residuals_exp_base", "residuals_exp_mj", "residuals_mj_diff"
    ... )
    """
    if not isinstance(mice_object, Mids):
        raise TypeError("mice_object must be a mids object (Mids)")

    completed_data = mice_object.complete("all")

    for i, df in enumerate(completed_data, start=1):
        if model1_residuals not in df.columns:
            raise ValueError(f"Variable {model1_residuals} not found in imputation {i}")
        if model2_residuals not in df.columns:
            raise ValueError(f"Variable {model2_residuals} not found in imputation {i}")

        df[new_var_name] = df[model1_residuals] - df[model2_residuals]

    log.info(
        "Calculated residual differences",
        variable=new_var_name,
        minuend=model1_residuals,
        subtrahend=model2_residuals
    )

    return repack_mice_with_residuals(
        completed_data,
        seed=mice_object.seed,
        max_iter=mice_object.iteration,
        where=mice_object.where,
        method=mice_object.method
    )


def repack_mice_with_residuals(
    completed_data: List[pd.DataFrame],
    seed: Optional[int] = DEFAULT_SEED,
    max_iter: int = DEFAULT_MAX_ITER,
    where: Optional[pd.DataFrame] = None,
    method: Optional[Dict[str, str]] = None
) -> Mids:
    """
    Repack completed datasets into a Mids

    Parameters
    ----------
    completed_data : list of pandas.DataFrame
        Completed datasets, one per imputation, with identical rows and columns
    seed : int, default 10000
        Random seed used in the original imputation
    max_iter : int, default 50
        Iterations of the original imputation
    where : pandas.DataFrame of bool, optional
        Original missingness pattern, kept for the variables it covers
    method : dict, optional
        Original imputation methods

    Returns
    -------
    Mids
        ``m`` equals the number of datasets; ``complete(k)`` returns dataset k
    """
    if not isinstance(completed_data, (list, tuple)):
        raise TypeError("completed_data must be a list of data frames")
    if len(completed_data) == 0:
        raise ValueError("completed_data must contain at least one data frame")

    for i, df in enumerate(completed_data, start=1):
        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"completed_data must be a list of data frames (element {i} is {type(df).__name__})")
    check_variables_exist(completed_data, completed_data[0].columns)

    return Mids.from_completed(
        list(completed_data),
        seed=seed,
        iteration=max_iter,
        where=where,
        method=method
    )

