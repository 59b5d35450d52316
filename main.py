#!/usr/bin/env python3
"""
Bike Rental Analysis - Main Pipeline
====================================

Runs the complete analysis of hourly bike-rental demand.

Phases:
    1. Load & validate - Read the 14-column CSV
    2. EDA - Distributions, correlations, hourly and seasonal profiles
    3. Preprocessing - Outliers, factors, imputation, transforms, encoding
    4. Training - kNN (with k sweep), decision tree, bagged trees, OLS
    5. Evaluation - R², MAD and RMSE on a hold-out split
    6. Ensemble - Weighted average of kNN, tree (or bagged tree) and OLS
    7. Cross-validation - Mean MAD over k folds per model type
    8. Report - Markdown report with figures

Usage:
    python main.py --data data/raw/SeoulBikeData.csv
    python main.py --data data/raw/SeoulBikeData.csv --config config/custom.yaml
"""

import argparse
import logging
import sys
from functools import partial
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent))

from bikerental.data_loader import load_config, load_data, validate_data, get_data_summary, print_data_summary
from bikerental.eda import generate_eda_report, print_correlation_insights, plot_transforms
from bikerental.preprocessing import preprocess_pipeline, print_preprocessing_summary, split_indices, PreparedData
from bikerental.model import (
    KNNRentalModel, build_model, train_model, tune_knn_k, print_model_summary, MODEL_NAMES
)
from bikerental.evaluation import calculate_metrics, evaluate_models, print_evaluation_report
from bikerental.ensemble import EnsembleModel
from bikerental.cross_validation import cross_validate, print_cross_validation_report
from bikerental.report import write_report


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute the exploratory analysis phase.

    Args:
        df: Loaded data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(df, output_dir=output_dir, show_plots=False)

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_preprocessing(df: pd.DataFrame, config: Dict[str, Any]) -> PreparedData:
    """
    Execute the preprocessing phase.

    Args:
        df: Loaded data
        config: Configuration dictionary

    Returns:
        PreparedData with aligned transformed and encoded tables
    """
    print("\n" + "=" * 70)
    print("PHASE 3: DATA PREPROCESSING")
    print("=" * 70)

    data = preprocess_pipeline(df, config.get('preprocessing', {}))
    print_preprocessing_summary(data)

    figures_path = Path(config.get('output', {}).get('figures_path', 'reports/figures/'))
    figures_path.mkdir(parents=True, exist_ok=True)
    plot_transforms(
        data.stabilizer.inverse_transform(data.transformed),
        data.transformed,
        data.stabilizer.choices_,
        save_path=str(figures_path / "06_transforms.png")
    )

    return data


def run_training(
    train: PreparedData,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute the training phase.

    kNN starts from k = sqrt(rows) and is retuned by sweeping k on a
    validation split carved from the training rows.

    Args:
        train: Training rows
        config: Configuration dictionary

    Returns:
        Dictionary with fitted models by name and the kNN tuning result
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    models_config = config.get('models', {})
    knn_config = models_config.get('knn', {})
    split_config = config.get('split', {})

    models = {}
    tuning = None

    encoded = train.features('encoded')
    initial = KNNRentalModel(n_neighbors=knn_config.get('n_neighbors')).fit(encoded, train.target)

    if knn_config.get('tune', True):
        fit_pos, val_pos = split_indices(
            len(train),
            test_size=split_config.get('validation_size', 0.2),
            random_state=split_config.get('random_state', 42)
        )
        fit_rows, val_rows = train.subset(fit_pos), train.subset(val_pos)
        best_k, mad_by_k = tune_knn_k(
            fit_rows.features('encoded'), fit_rows.target,
            val_rows.features('encoded'), val_rows.target,
            k_values=range(knn_config.get('k_min', 1), knn_config.get('k_max', 15) + 1)
        )
        tuning = {'initial_k': initial.k_, 'best_k': best_k, 'mad_by_k': mad_by_k}
        models['knn'] = KNNRentalModel(n_neighbors=best_k).fit(encoded, train.target)
    else:
        models['knn'] = initial

    for name in ('tree', 'bagged_tree', 'linear', 'baseline'):
        model = build_model(name, models_config)
        models[name] = train_model(name, train.features(model.representation), train.target, models_config)

    for name in MODEL_NAMES + ('bagged_tree',):
        print_model_summary(models[name])

    return {'models': models, 'knn_tuning': tuning}


def run_evaluation(
    models: Dict[str, Any],
    test: PreparedData,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute the hold-out evaluation phase.

    Args:
        models: Fitted models by name
        test: Hold-out rows
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    predictions = {
        name: model.predict(test.features(model.representation))
        for name, model in models.items()
    }

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    result = evaluate_models(test.target, predictions, output_dir=output_dir, show_plots=False)
    print_evaluation_report(result['metrics'])

    return result


def run_ensemble(
    models: Dict[str, Any],
    test: PreparedData,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Blend kNN, tree and OLS, then the same blend with the bagged tree.

    Args:
        models: Fitted models by name
        test: Hold-out rows
        config: Configuration dictionary

    Returns:
        Dictionary with the weights and metrics of both blends
    """
    print("\n" + "=" * 70)
    print("PHASE 6: ENSEMBLE")
    print("=" * 70)

    weights = config.get('ensemble', {}).get('weights')
    ensemble = EnsembleModel(
        {name: models[name] for name in MODEL_NAMES},
        weights
    )
    bagged = ensemble.with_model('tree', models['bagged_tree'])

    metrics = {
        'ensemble': calculate_metrics(test.target, ensemble.predict(test)),
        'ensemble_bagged': calculate_metrics(test.target, bagged.predict(test)),
    }

    print(ensemble.describe())
    print(bagged.describe())
    print_evaluation_report(metrics)

    return {'weights': ensemble.weights, 'metrics': metrics}


def run_cross_validation(
    data: PreparedData,
    best_k: int,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute k-fold cross-validation for every model type.

    Args:
        data: All prepared rows
        best_k: k to use for the kNN model
        config: Configuration dictionary

    Returns:
        Cross-validation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 7: CROSS-VALIDATION")
    print("=" * 70)

    models_config = config.get('models', {})
    cv_config = config.get('cross_validation', {})

    factories = {
        'knn': partial(KNNRentalModel, n_neighbors=best_k),
        'tree': partial(build_model, 'tree', models_config),
        'bagged_tree': partial(build_model, 'bagged_tree', models_config),
        'linear': partial(build_model, 'linear', models_config),
        'baseline': partial(build_model, 'baseline', models_config),
    }

    result = cross_validate(
        data,
        factories,
        n_folds=cv_config.get('n_folds', 5),
        random_state=cv_config.get('random_state', 42)
    )
    print_cross_validation_report(result)

    return result


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides logging.level from the config

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("BIKE RENTAL ANALYSIS PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    data_config = config.get('data', {})

    print("\n📊 PHASE 1: Loading data...")
    df = load_data(
        data_path,
        encoding=data_config.get('encoding', 'latin-1'),
        date_format=data_config.get('date_format', '%d/%m/%Y')
    )
    print_data_summary(df)

    _, validation_report = validate_data(df, strict=True)

    results = {
        'config': config,
        'data_summary': get_data_summary(df),
        'validation': validation_report,
    }

    results['eda'] = run_eda(df, config)

    data = run_preprocessing(df, config)
    results['preprocessing'] = data

    split_config = config.get('split', {})
    train_pos, test_pos = split_indices(
        len(data),
        test_size=split_config.get('test_size', 0.2),
        random_state=split_config.get('random_state', 42)
    )
    train, test = data.subset(train_pos), data.subset(test_pos)

    training = run_training(train, config)
    models = training['models']
    results['models'] = models
    results['knn_tuning'] = training['knn_tuning']
    results['linear_dropped'] = models['linear'].dropped_columns_

    results['evaluation'] = run_evaluation(models, test, config)
    results['ensemble'] = run_ensemble(models, test, config)
    results['cross_validation'] = run_cross_validation(data, models['knn'].k_, config)

    report_file = config.get('output', {}).get('report_file', 'reports/bike_rental_report.md')
    results['report_path'] = write_report(results, report_file)

    best = min(results['cross_validation']['mean_mad'], key=results['cross_validation']['mean_mad'].get)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Rows after preprocessing: {len(data)}")
    print(f"  • Ensemble MAD: {results['ensemble']['metrics']['ensemble']['mad']:.2f}")
    print(f"  • Best cross-validated model: {best} "
          f"(mean MAD {results['cross_validation']['mean_mad'][best]:.2f})")
    print(f"  • Report: {results['report_path']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Hourly Bike Rental Demand Analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/SeoulBikeData.csv
  python main.py --data data/raw/SeoulBikeData.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Path to the input CSV file (default: data.path from the config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    data_path = args.data or load_config(args.config).get('data', {}).get('path', '')
    if not Path(data_path).exists():
        print(f"Error: Data file not found: {data_path}")
        print("\nPlease place the rental CSV file in the specified location.")
        print("Expected format: CSV with 14 columns (Date, Rented Bike Count, Hour, weather, calendar)")
        sys.exit(1)

    try:
        run_full_pipeline(data_path, args.config, log_level="DEBUG" if args.verbose else None)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
