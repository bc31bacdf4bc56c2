"""
mice-residuals

Attach per-imputation model residuals to multiply imputed data and repack
the result for pooled analysis. Built for restricted cubic spline (RCS)
workflows, which cannot be fit jointly across imputations.
"""

__version__ = "0.1.0"

from .imputation import (
    Mids,
    Mira,
    add_residuals_to_mice,
    build_exposure_models,
    calculate_residual_differences,
    complete,
    impute,
    pool,
    repack_mice_with_residuals,
    with_imputations,
)

__all__ = [
    'Mids',
    'Mira',
    'add_residuals_to_mice',
    'build_exposure_models',
    'calculate_residual_differences',
    'complete',
    'impute',
    'pool',
    'repack_mice_with_residuals',
    'with_imputations',
]
