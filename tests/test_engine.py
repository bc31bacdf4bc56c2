import numpy as np
import pandas as pd
import pytest

from mice_residuals.imputation import Mids, impute


def test_impute_fills_every_missing_value(imp_data, nhanes_like):
    assert isinstance(imp_data, Mids)
    assert imp_data.m == 3
    assert imp_data.iteration == 2
    assert imp_data.seed == 123
    assert imp_data.nmis.to_dict() == {'age': 0, 'bmi': 8, 'hyp': 5, 'chl': 6}
    assert imp_data.method == {'age': '', 'bmi': 'pmm', 'hyp': 'pmm', 'chl': 'pmm'}

    for df in imp_data.complete("all"):
        assert not df.isna().any().any()
        assert len(df) == len(nhanes_like)
        observed = nhanes_like.notna()
        pd.testing.assert_frame_equal(df[observed], nhanes_like[observed])


def test_impute_uses_observed_values_as_donors(imp_data, nhanes_like):
    observed_hyp = set(nhanes_like['hyp'].dropna().unique())
    for k in range(1, imp_data.m + 1):
        assert set(imp_data.imp['hyp'][k].unique()) <= observed_hyp


def test_impute_is_reproducible_with_seed(nhanes_like):
    first = impute(nhanes_like, m=2, maxit=1, seed=99)
    second = impute(nhanes_like, m=2, maxit=1, seed=99)
    for var in ['bmi', 'hyp', 'chl']:
        pd.testing.assert_frame_equal(first.imp[var], second.imp[var])


def test_impute_seed_controls_the_draws(nhanes_like):
    first = impute(nhanes_like, m=2, maxit=1, seed=99)
    other = impute(nhanes_like, m=2, maxit=1, seed=100)
    assert not first.imp['bmi'].equals(other.imp['bmi'])
    # chains of one run are not copies of each other
    assert not first.imp['bmi'][1].equals(first.imp['bmi'][2])


def test_impute_complete_data_has_no_imputations():
    data = pd.DataFrame({'a': [1.0, 2.0, 3.0], 'b': [2.0, 1.0, 0.0]})
    mids = impute(data, m=2)
    assert mids.nmis.sum() == 0
    pd.testing.assert_frame_equal(mids.complete(2), data)


def test_impute_rejects_non_dataframe():
    with pytest.raises(TypeError, match="DataFrame"):
        impute("not a data frame")


def test_impute_rejects_non_numeric(nhanes_like):
    nhanes_like['group'] = 'a'
    with pytest.raises(ValueError, match="non-numeric: group"):
        impute(nhanes_like)


def test_impute_rejects_rows_without_data(nhanes_like):
    nhanes_like.loc[0, :] = np.nan
    with pytest.raises(ValueError, match="every variable missing"):
        impute(nhanes_like)


def test_impute_rejects_bad_counts(nhanes_like):
    with pytest.raises(ValueError, match="m must be"):
        impute(nhanes_like, m=0)
    with pytest.raises(ValueError, match="maxit must be"):
        impute(nhanes_like, maxit=0)
