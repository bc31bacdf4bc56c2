#!/usr/bin/env python3
"""
Residual Pipeline

Imputes an incomplete dataset, fits the configured exposure models in every
imputation, attaches their residuals, optionally computes a residual
difference, and stores the repacked mids object in DuckDB.

Usage:
    # Run with the default configuration
    python pipelines/python/residuals/run_residual_pipeline.py --input data/raw/study.csv

    # Custom configuration and database
    python pipelines/python/residuals/run_residual_pipeline.py \
        --input data/raw/study.parquet \
        --config config/residuals/study.yaml \
        --database data/duckdb/study.duckdb

Command-line Arguments:
    --input: CSV or Parquet file with the incomplete data (required)
    --config: Configuration file (defaults to config/residuals/residuals_config.yaml)
    --database: Database path (overrides config)
    --table-prefix: Table prefix for the stored mids (overrides config)
    --no-save: Skip writing to DuckDB
    --log-level: Logging level

Output:
    - Summary table of residual variables per imputation
    - Stored mids tables (<prefix>_data, <prefix>_imp_<variable>, <prefix>_metadata)
"""

import argparse
import sys
import structlog
import pandas as pd
from pathlib import Path
from tabulate import tabulate
from typing import Any, Dict, Optional

from mice_residuals.db import DatabaseManager, MidsStore
from mice_residuals.imputation import (
    add_residuals_to_mice,
    build_exposure_models,
    calculate_residual_differences,
    describe_residuals,
    get_imputation_settings,
    get_model_specs,
    get_residuals_config,
    get_table_prefix,
    impute,
)
from mice_residuals.imputation.helpers import summarize_models
from mice_residuals.utils.logging import setup_logging

log = structlog.get_logger()


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Add model residuals to multiply imputed data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default configuration
  python pipelines/python/residuals/run_residual_pipeline.py --input data/raw/study.csv

  # Dry run without storing
  python pipelines/python/residuals/run_residual_pipeline.py --input data/raw/study.csv --no-save
        """
    )

    parser.add_argument(
        "--input",
        type=str,
        required=True,
        help="CSV or Parquet file with the incomplete data"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Configuration file path (default: config/residuals/residuals_config.yaml)"
    )
    parser.add_argument(
        "--database",
        type=str,
        default=None,
        help="Database file path (default: database.db_path from config)"
    )
    parser.add_argument(
        "--table-prefix",
        type=str,
        default=None,
        help="Table prefix for the stored mids (default: database.table_prefix from config)"
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not write the result to DuckDB"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    return parser.parse_args(argv)


def load_input(path: str) -> pd.DataFrame:
    """Load the incomplete data from CSV or Parquet.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file extension is not supported
    """
    input_file = Path(path)
    if not input_file.exists():
        raise FileNotFoundError(f"Input file not found: {input_file}")

    suffix = input_file.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(input_file)
    elif suffix in (".parquet", ".pq"):
        df = pd.read_parquet(input_file)
    else:
        raise ValueError(f"Unsupported input format '{suffix}'. Use .csv or .parquet")

    log.info("Input loaded", path=str(input_file), rows=len(df), columns=len(df.columns))
    return df


def run_pipeline(
    data: pd.DataFrame,
    config: Dict[str, Any],
    store: Optional[MidsStore] = None,
    table_prefix: Optional[str] = None
) -> Dict[str, Any]:
    """Impute, fit, attach residuals and optionally store.

    Args:
        data: Incomplete data
        config: Residuals configuration
        store: Storage target; nothing is written when None
        table_prefix: Table prefix for storage

    Returns:
        Dict with the result mids, the fitted models and the residual summary
    """
    settings = get_imputation_settings(config)
    specs = get_model_specs(config)
    residual_settings = config['residuals']

    log.info("STEP 1: Impute", **settings)
    imp_data = impute(data, **settings)

    log.info("STEP 2: Fit exposure models", outcomes=specs['outcome_vars'])
    models = build_exposure_models(
        imp_data,
        outcome_vars=specs['outcome_vars'],
        base_predictors=specs['base_predictors'],
        marijuana_var=specs['marijuana_var']
    )

    log.info("STEP 3: Add residuals", models=list(models))
    result = add_residuals_to_mice(
        imp_data,
        models,
        seed=residual_settings.get('seed', 10000),
        max_iter=residual_settings.get('max_iter', 50),
        prefix=residual_settings.get('prefix', 'residuals_'),
        kind=residual_settings.get('kind', 'working')
    )

    difference = specs.get('difference')
    if difference and specs['marijuana_var']:
        log.info("STEP 4: Residual differences", name=difference['name'])
        result = calculate_residual_differences(
            result,
            difference['minuend'],
            difference['subtrahend'],
            difference['name']
        )

    if store is not None:
        table_prefix = table_prefix or get_table_prefix(config)
        log.info("STEP 5: Store", table_prefix=table_prefix)
        store.save(result, table_prefix)

    return {
        'mids': result,
        'models': models,
        'summary': describe_residuals(result),
    }


def main(argv=None) -> int:
    """Main residual pipeline."""
    args = parse_arguments(argv)
    setup_logging(level=args.log_level, structured=False)

    try:
        config = get_residuals_config(args.config)
        if args.database:
            config['database']['db_path'] = args.database

        data = load_input(args.input)

        store = None
        if not args.no_save:
            store = MidsStore(DatabaseManager(config['database']['db_path']))

        outputs = run_pipeline(data, config, store=store, table_prefix=args.table_prefix)

        print(outputs['mids'].summary())
        print()
        print(tabulate(summarize_models(outputs['models']), headers="keys", tablefmt="grid", showindex=False))
        print()
        print(tabulate(outputs['summary'], headers="keys", tablefmt="grid", showindex=False, floatfmt=".4f"))

        log.info("Residual pipeline completed successfully")
        return 0

    except (FileNotFoundError, ValueError, TypeError) as e:
        log.error("Residual pipeline failed", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
