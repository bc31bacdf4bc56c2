"""
Helper functions for validating and inspecting multiply imputed data

Available Functions
-------------------
- validate_mids(): Check that an object is a usable Mids
- validate_model_list(): Check a named collection of per-imputation fits
- check_variables_exist(): Check variables are present in every imputation
- make_safe_var_name(): Build a residual variable name from a model label
- describe_residuals(): Per-imputation summary of residual variables

Quick Examples
--------------
>>> validate_mids(imp_data)
True
>>> make_safe_var_name("chl model (adj)")
'residuals_chl_model_adj'
"""

import re
import pandas as pd
from typing import Any, Dict, Iterable, List

from .mids import Mids, RESIDUAL_PREFIX
from .mira import Mira


def validate_mids(x: Any, arg_name: str = "mice_object") -> bool:
    """
    Validate that an object is a Mids with at least one imputation

    Raises
    ------
    TypeError
        If ``x`` is not a Mids
    ValueError
        If ``x`` holds no imputations
    """
    if not isinstance(x, Mids):
        raise TypeError(f"{arg_name} must be a mids object (Mids)")

    if x.m is None or x.m < 1:
        raise ValueError(f"{arg_name} must contain at least 1 imputation")

    return True


def validate_model_list(models: Any, arg_name: str = "models", require_models: bool = False) -> bool:
    """
    Validate a named collection of models fitted with with_imputations()

    Parameters
    ----------
    models : dict of str -> Mira
        Fitted models keyed by name
    arg_name : str, default "models"
        Argument name used in error messages
    require_models : bool, default False
        Also reject an empty dict. Structural problems are then all reported
        as "<arg_name> must be a named list of model objects", the message
        of add_residuals_to_mice().

    Raises
    ------
    TypeError
        If ``models`` is not a dict, has missing/empty names, or holds
        anything other than Mira objects
    """
    named_list_error = (
        f"{arg_name} must be a named list of model objects" if require_models
        else f"{arg_name} must be a named list with non-empty names"
    )

    if isinstance(models, (list, tuple)):
        raise TypeError(named_list_error)

    if not isinstance(models, dict):
        raise TypeError(named_list_error if require_models else f"{arg_name} must be a list")

    if require_models and len(models) == 0:
        raise TypeError(named_list_error)

    if any(not isinstance(name, str) or name == "" for name in models):
        raise TypeError(named_list_error)

    for name, model in models.items():
        if not isinstance(model, Mira):
            location = "" if require_models else f" in {arg_name}"
            raise TypeError(f"Model {name}{location} must be fitted with with_imputations()")

    return True


def check_variables_exist(completed_data: List[pd.DataFrame], var_names: Iterable[str]) -> bool:
    """
    Check that variables exist in every completed dataset

    Raises
    ------
    ValueError
        Naming the missing variables and the first imputation lacking them
    """
    var_names = list(var_names)
    for i, df in enumerate(completed_data, start=1):
        missing_vars = [var for var in var_names if var not in df.columns]
        if missing_vars:
            raise ValueError(
                f"Variables {', '.join(missing_vars)} not found in imputation {i}"
            )
    return True


def make_safe_var_name(base_name: str, prefix: str = RESIDUAL_PREFIX) -> str:
    """
    Create a safe variable name for residuals

    Special characters become underscores, repeated underscores collapse
    and leading/trailing underscores are dropped before the prefix is added.

    Examples
    --------
    >>> make_safe_var_name("normal_name")
    'residuals_normal_name'
    >>> make_safe_var_name("test name!")
    'residuals_test_name'
    """
    safe_name = re.sub(r"[^A-Za-z0-9_]", "_", str(base_name))
    safe_name = re.sub(r"_+", "_", safe_name)
    safe_name = safe_name.strip("_")
    return f"{prefix}{safe_name}"


def describe_residuals(mids: Mids) -> pd.DataFrame:
    """
    Summarize residual variables in each imputation

    Returns
    -------
    pandas.DataFrame
        Columns: variable, imputation_m, n, mean, std, n_missing
    """
    validate_mids(mids, "mids")

    rows = []
    for k, df in enumerate(mids.complete("all"), start=1):
        for var in mids.residual_variables:
            values = pd.to_numeric(df[var], errors="coerce")
            rows.append({
                'variable': var,
                'imputation_m': k,
                'n': int(values.notna().sum()),
                'mean': values.mean(),
                'std': values.std(),
                'n_missing': int(values.isna().sum()),
            })

    return pd.DataFrame(rows, columns=['variable', 'imputation_m', 'n', 'mean', 'std', 'n_missing'])


def summarize_models(models: Dict[str, Mira]) -> pd.DataFrame:
    """One row per named model: formula, fitting call and number of analyses"""
    validate_model_list(models)
    return pd.DataFrame([
        {'model': name, 'formula': fits.formula, 'call': fits.call, 'analyses': len(fits.analyses)}
        for name, fits in models.items()
    ])
