import numpy as np
import pandas as pd
import pytest

from mice_residuals.imputation import Mids, Mira, fit_glm, pool, with_imputations


def test_pool_columns_and_terms(imp_data):
    pooled = pool(with_imputations(imp_data, "chl ~ age + bmi"))

    assert list(pooled.index) == ['Intercept', 'age', 'bmi']
    assert list(pooled.columns) == [
        'estimate', 'ubar', 'b', 't', 'dfcom', 'df', 'riv', 'lambda', 'fmi',
        'std_error', 'statistic', 'p_value'
    ]
    assert (pooled['t'] >= pooled['ubar']).all()
    assert ((pooled['p_value'] >= 0) & (pooled['p_value'] <= 1)).all()


def test_pool_matches_rubins_rules(imp_data):
    fits = with_imputations(imp_data, "chl ~ age + bmi")
    pooled = pool(fits)

    estimates = np.array([fit.params['bmi'] for fit in fits.analyses])
    variances = np.array([fit.bse['bmi'] ** 2 for fit in fits.analyses])
    m = len(estimates)
    b = estimates.var(ddof=1)
    t = variances.mean() + (1 + 1 / m) * b

    assert pooled.loc['bmi', 'estimate'] == pytest.approx(estimates.mean())
    assert pooled.loc['bmi', 'b'] == pytest.approx(b)
    assert pooled.loc['bmi', 't'] == pytest.approx(t)
    assert pooled.loc['bmi', 'std_error'] == pytest.approx(np.sqrt(t))
    assert pooled.loc['bmi', 'dfcom'] == fits.analyses[0].df_resid


def test_pool_identical_imputations_has_no_between_variance(completed_list):
    datasets = [completed_list[0].copy() for _ in range(3)]
    mids = Mids.from_completed(datasets)
    pooled = pool(with_imputations(mids, "y ~ x"))
    single = fit_glm("y ~ x", completed_list[0])

    assert pooled['b'].abs().max() == pytest.approx(0)
    assert pooled.loc['x', 'estimate'] == pytest.approx(single.params['x'])
    assert pooled.loc['x', 'std_error'] == pytest.approx(single.bse['x'])
    assert pooled.loc['x', 'df'] == pytest.approx(
        (single.df_resid + 1) / (single.df_resid + 3) * single.df_resid
    )


def test_pool_requires_two_imputations(imp_data):
    fits = with_imputations(imp_data, "chl ~ age")
    with pytest.raises(ValueError, match="at least 2 imputations"):
        pool(Mira(fits.analyses[:1]))
    with pytest.raises(TypeError, match="with_imputations"):
        pool(fits.analyses)
