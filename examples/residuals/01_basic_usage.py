"""
Basic Usage Examples - Residuals in Multiply Imputed Data

Demonstrates the residual workflow on simulated exposure data: impute,
fit exposure models, attach residuals, fit a restricted cubic spline model
on the residuals in every imputation, and pool.
"""

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from mice_residuals.imputation import (
    add_residuals_to_mice,
    build_exposure_models,
    calculate_residual_differences,
    describe_residuals,
    impute,
    pool,
    with_imputations,
)

rng = np.random.RandomState(2024)
n = 200
exposure = pd.DataFrame({
    'air_nicotine': rng.gamma(2.0, 1.5, n),
    'cig7': rng.binomial(1, 0.3, n).astype(float),
    'mj7': rng.binomial(1, 0.2, n).astype(float),
    'age': rng.uniform(20, 65, n),
})
exposure['biomarker'] = (
    5 + 0.8 * exposure['air_nicotine'] + 2.0 * exposure['mj7']
    + 0.05 * exposure['age'] + rng.normal(0, 1, n)
)
exposure['outcome'] = np.sin(exposure['biomarker'] / 3) + rng.normal(0, 0.2, n)
exposure.loc[rng.choice(n, 20, replace=False), 'air_nicotine'] = np.nan
exposure.loc[rng.choice(n, 15, replace=False), 'age'] = np.nan

print("=" * 70)
print("EXAMPLE 1: Impute")
print("=" * 70)

imp_data = impute(exposure, m=5, maxit=5, seed=10000)
print(imp_data)

print("\n" + "=" * 70)
print("EXAMPLE 2: Exposure Models and Residuals")
print("=" * 70)

models = build_exposure_models(
    imp_data,
    outcome_vars=['biomarker'],
    base_predictors=['air_nicotine', 'cig7', 'age'],
    marijuana_var='mj7'
)
result = add_residuals_to_mice(imp_data, models, seed=12345)
result = calculate_residual_differences(
    result, 'residuals_biomarker_base', 'residuals_biomarker_mj', 'residuals_mj_diff'
)
print(result)
print(describe_residuals(result).head(10))

print("\n" + "=" * 70)
print("EXAMPLE 3: Restricted Cubic Spline on Residuals, Pooled")
print("=" * 70)

linear = pool(with_imputations(result, "outcome ~ residuals_biomarker_base"))
print(linear[['estimate', 'std_error', 'df', 'p_value']])

spline_fits = with_imputations(
    result,
    lambda df: smf.ols("outcome ~ cr(residuals_biomarker_base, df=4)", data=df).fit()
)
print(pool(spline_fits)[['estimate', 'std_error', 'fmi']])
