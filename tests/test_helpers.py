import pandas as pd
import pytest

from mice_residuals.imputation import (
    add_residuals_to_mice,
    check_variables_exist,
    describe_residuals,
    make_safe_var_name,
    validate_mids,
    validate_model_list,
    with_imputations,
)
from mice_residuals.imputation.helpers import summarize_models


def test_validate_mids(imp_data):
    assert validate_mids(imp_data) is True
    with pytest.raises(TypeError, match="mice_object must be a mids object"):
        validate_mids("not_mids")
    with pytest.raises(TypeError, match="data must be a mids object"):
        validate_mids(pd.DataFrame(), arg_name="data")


def test_validate_mids_requires_imputations(imp_data):
    imp_data.m = 0
    with pytest.raises(ValueError, match="at least 1 imputation"):
        validate_mids(imp_data)


def test_make_safe_var_name():
    assert make_safe_var_name("test name!") == "residuals_test_name"
    assert make_safe_var_name("normal_name") == "residuals_normal_name"
    assert make_safe_var_name("__a--b__") == "residuals_a_b"
    assert make_safe_var_name("exp mj", prefix="resid_") == "resid_exp_mj"


def test_validate_model_list(imp_data):
    model1 = with_imputations(imp_data, "chl ~ age + bmi")
    assert validate_model_list({"test": model1}) is True

    with pytest.raises(TypeError, match="must be a list"):
        validate_model_list("not_list")
    with pytest.raises(TypeError, match="must be a named list"):
        validate_model_list([model1])
    with pytest.raises(TypeError, match="must be a named list"):
        validate_model_list({"": model1})
    with pytest.raises(TypeError, match="Model bad in models must be fitted with with_imputations"):
        validate_model_list({"bad": object()})


def test_check_variables_exist(completed_list):
    assert check_variables_exist(completed_list, ['x', 'y']) is True
    completed_list[2] = completed_list[2].drop(columns=['x', 'y'])
    with pytest.raises(ValueError, match="Variables x, y not found in imputation 3"):
        check_variables_exist(completed_list, ['x', 'y', 'g'])


def test_describe_residuals(imp_data, models):
    result = add_residuals_to_mice(imp_data, models)
    summary = describe_residuals(result)

    assert list(summary.columns) == ['variable', 'imputation_m', 'n', 'mean', 'std', 'n_missing']
    assert len(summary) == 2 * imp_data.m
    assert set(summary['variable']) == {'residuals_baseline', 'residuals_adjusted'}
    assert (summary['n'] == 40).all()
    # Gaussian GLM residuals with an intercept average to zero
    assert summary['mean'].abs().max() < 1e-6


def test_describe_residuals_without_residuals(imp_data):
    assert describe_residuals(imp_data).empty


def test_summarize_models(models):
    table = summarize_models(models)
    assert table['model'].tolist() == ['baseline', 'adjusted']
    assert table['formula'].tolist() == ['chl ~ age + bmi', 'chl ~ age + bmi + hyp']
    assert (table['analyses'] == 3).all()


def test_validate_model_list_requiring_models(imp_data):
    model1 = with_imputations(imp_data, "chl ~ age + bmi")
    assert validate_model_list({"test": model1}, require_models=True) is True

    for bad in [{}, model1, [model1], {"": model1}]:
        with pytest.raises(TypeError, match="models must be a named list of model objects"):
            validate_model_list(bad, require_models=True)
    with pytest.raises(TypeError, match=r"^Model bad must be fitted with with_imputations\(\)$"):
        validate_model_list({"bad": object()}, require_models=True)
