"""
Configuration loader for the residual pipeline

Provides a single source of truth for imputation, residual and storage
parameters across scripts.

Environment Variables:
    MICE_RESIDUALS_CONFIG: Override the configuration file location
    MICE_RESIDUALS_DB_PATH: Override the DuckDB database path
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv

REQUIRED_SECTIONS = ['residuals', 'imputation', 'database']


def get_default_config_path() -> Path:
    """Location of the bundled config/residuals/residuals_config.yaml"""
    project_root = Path(__file__).parent.parent.parent
    return project_root / "config" / "residuals" / "residuals_config.yaml"


def get_residuals_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load residual pipeline configuration from YAML file

    Parameters
    ----------
    config_path : str, optional
        Path to config file. If None, uses MICE_RESIDUALS_CONFIG or the
        default location.

    Returns
    -------
    dict
        Configuration dictionary

    Examples
    --------
    >>> config = get_residuals_config()
    >>> print(config['residuals']['seed'])
    10000

    >>> print(config['imputation']['n_imputations'])
    5
    """
    load_dotenv()

    if config_path is None:
        env_path = os.getenv('MICE_RESIDUALS_CONFIG')
        config_path = Path(env_path) if env_path else get_default_config_path()
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Residuals config file not found: {config_path}\n"
            f"Expected location: config/residuals/residuals_config.yaml"
        )

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing configuration file {config_path}: {e}") from e

    if config is None:
        raise ValueError(f"Configuration file is empty: {config_path}")

    missing_sections = [section for section in REQUIRED_SECTIONS if section not in config]
    if missing_sections:
        raise ValueError(
            f"Missing required sections in config: {', '.join(missing_sections)}"
        )

    env_db_path = os.getenv('MICE_RESIDUALS_DB_PATH')
    if env_db_path:
        config['database']['db_path'] = env_db_path

    return config


def get_random_seed(config: Optional[Dict[str, Any]] = None) -> int:
    """
    Seed recorded on repacked mids objects

    Examples
    --------
    >>> get_random_seed()
    10000
    """
    config = config or get_residuals_config()
    return config['residuals'].get('seed', 10000)


def get_max_iter(config: Optional[Dict[str, Any]] = None) -> int:
    """Iteration count recorded on repacked mids objects"""
    config = config or get_residuals_config()
    return config['residuals'].get('max_iter', 50)


def get_residual_prefix(config: Optional[Dict[str, Any]] = None) -> str:
    config = config or get_residuals_config()
    return config['residuals'].get('prefix', 'residuals_')


def get_imputation_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Settings for impute()

    Returns
    -------
    dict
        Keys m, maxit, k_pmm and seed, ready to pass as keyword arguments

    Examples
    --------
    >>> imp_data = impute(df, **get_imputation_settings())
    """
    config = config or get_residuals_config()
    imputation = config['imputation']
    return {
        'm': imputation.get('n_imputations', 5),
        'maxit': imputation.get('maxit', 5),
        'k_pmm': imputation.get('k_pmm', 20),
        'seed': imputation.get('random_seed'),
    }


def get_model_specs(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Exposure model specification

    Returns
    -------
    dict
        outcome_vars, base_predictors, marijuana_var and optional difference
    """
    config = config or get_residuals_config()
    if 'models' not in config:
        raise ValueError(
            "Model configuration not found in config file. "
            "Please add a 'models' section with outcome_vars and base_predictors."
        )

    models = config['models']
    missing = [key for key in ['outcome_vars', 'base_predictors'] if not models.get(key)]
    if missing:
        raise ValueError(f"Missing model settings in config: {', '.join(missing)}")

    return {
        'outcome_vars': list(models['outcome_vars']),
        'base_predictors': list(models['base_predictors']),
        'marijuana_var': models.get('marijuana_var'),
        'difference': models.get('difference'),
    }


def get_table_prefix(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Database table prefix for stored mids objects

    Examples
    --------
    >>> get_table_prefix()
    'residuals_imputed'
    """
    config = config or get_residuals_config()
    return config['database'].get('table_prefix', 'residuals_imputed')


if __name__ == "__main__":
    config = get_residuals_config()
    print("Residuals Configuration:")
    print(f"  Residual prefix: {config['residuals']['prefix']}")
    print(f"  Seed: {config['residuals']['seed']}")
    print(f"  Max iterations: {config['residuals']['max_iter']}")
    print(f"  Number of imputations (M): {config['imputation']['n_imputations']}")
    print(f"  Database path: {config['database']['db_path']}")
