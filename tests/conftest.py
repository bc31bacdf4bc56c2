import numpy as np
import pandas as pd
import pytest

from mice_residuals.imputation import Mids, impute, with_imputations


@pytest.fixture
def nhanes_like():
    """Small incomplete dataset shaped like mice's nhanes2 example"""
    rng = np.random.RandomState(123)
    n = 40
    age = rng.randint(1, 4, n).astype(float)
    bmi = rng.normal(26, 4, n)
    hyp = rng.binomial(1, 0.3, n).astype(float)
    chl = 150 + 20 * age + 1.5 * bmi + 10 * hyp + rng.normal(0, 15, n)
    df = pd.DataFrame({'age': age, 'bmi': bmi, 'hyp': hyp, 'chl': chl})
    df.loc[[1, 4, 7, 10, 13, 20, 25, 30], 'bmi'] = np.nan
    df.loc[[2, 8, 13, 22, 35], 'hyp'] = np.nan
    df.loc[[3, 9, 17, 28, 33, 38], 'chl'] = np.nan
    return df


@pytest.fixture
def imp_data(nhanes_like):
    return impute(nhanes_like, m=3, maxit=2, seed=123)


@pytest.fixture
def models(imp_data):
    return {
        "baseline": with_imputations(imp_data, "chl ~ age + bmi"),
        "adjusted": with_imputations(imp_data, "chl ~ age + bmi + hyp"),
    }


@pytest.fixture
def completed_list():
    base = pd.DataFrame({
        'x': [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
        'y': [2.0, 4.1, 5.9, 8.2, 9.8, 12.1],
        'g': [0, 1, 0, 1, 0, 1],
    })
    second = base.copy()
    second.loc[1, 'x'] = 2.5
    second.loc[4, 'y'] = 10.5
    third = base.copy()
    third.loc[1, 'x'] = 1.5
    return [base, second, third]


@pytest.fixture
def packed(completed_list):
    return Mids.from_completed(completed_list, seed=42, iteration=7)
