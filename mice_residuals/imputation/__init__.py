"""
Imputation module for mice-residuals

Provides the multiply imputed data container, repeated analyses, pooling,
and the residual extract / attach / repack workflow.
"""

from .config import (
    get_residuals_config,
    get_imputation_settings,
    get_model_specs,
    get_random_seed,
    get_table_prefix
)
from .engine import impute
from .helpers import (
    check_variables_exist,
    describe_residuals,
    make_safe_var_name,
    validate_mids,
    validate_model_list
)
from .mids import Mids, complete
from .mira import Mira, extract_residuals, fit_glm, with_imputations
from .pooling import pool
from .residuals import (
    add_residuals_to_mice,
    build_exposure_models,
    calculate_residual_differences,
    repack_mice_with_residuals
)

__all__ = [
    'get_residuals_config',
    'get_imputation_settings',
    'get_model_specs',
    'get_random_seed',
    'get_table_prefix',
    'impute',
    'check_variables_exist',
    'describe_residuals',
    'make_safe_var_name',
    'validate_mids',
    'validate_model_list',
    'Mids',
    'complete',
    'Mira',
    'extract_residuals',
    'fit_glm',
    'with_imputations',
    'pool',
    'add_residuals_to_mice',
    'build_exposure_models',
    'calculate_residual_differences',
    'repack_mice_with_residuals'
]
