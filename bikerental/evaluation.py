"""
Model Evaluation Module
=======================

Hold-out metrics and diagnostic plots for the rental models.

Features:
    - R² (squared Pearson correlation), MAD and RMSE per model
    - Actual vs Predicted plots
    - Residual analysis
    - Error summary bar charts
    - Evaluation report generation (figures + JSON)
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error

logger = logging.getLogger(__name__)


def calculate_metrics(observed, predicted) -> Dict[str, Any]:
    """
    Compare observed and predicted values.

    R² is the squared Pearson correlation between the two vectors, so it is
    NaN (not zero) when either vector has zero variance.

    Args:
        observed: Ground-truth values
        predicted: Predicted values of the same length

    Returns:
        Dictionary with 'r2', 'mad', 'rmse' and 'n'

    Raises:
        ValueError: On empty input, length mismatch or non-finite values
    """
    observed = np.asarray(observed, dtype=float).ravel()
    predicted = np.asarray(predicted, dtype=float).ravel()

    if observed.shape != predicted.shape:
        raise ValueError(
            f"observed has {observed.size} values but predicted has {predicted.size}"
        )
    if observed.size == 0:
        raise ValueError("Cannot evaluate empty prediction vectors")
    if not (np.all(np.isfinite(observed)) and np.all(np.isfinite(predicted))):
        raise ValueError("observed and predicted must contain only finite values")

    with np.errstate(invalid='ignore', divide='ignore'):
        if observed.size > 1 and np.std(observed) > 0 and np.std(predicted) > 0:
            r = np.corrcoef(observed, predicted)[0, 1]
            r2 = float(np.clip(r ** 2, 0.0, 1.0))
        else:
            r2 = float('nan')

    mad = mean_absolute_error(observed, predicted)
    rmse = np.sqrt(mean_squared_error(observed, predicted))

    return {
        'r2': r2,
        'mad': float(mad),
        'rmse': float(rmse),
        'n': int(observed.size)
    }


def plot_actual_vs_predicted(
    observed: np.ndarray,
    predictions: Dict[str, np.ndarray],
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create actual vs predicted scatter plots, one panel per model.

    Args:
        observed: Ground truth values
        predictions: Predicted values keyed by model name
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(predictions)
    n_rows = (len(names) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for i, name in enumerate(names):
        ax = axes[i]
        pred = predictions[name]

        ax.scatter(observed, pred, alpha=0.3, s=10)

        min_val = min(np.min(observed), np.min(pred))
        max_val = max(np.max(observed), np.max(pred))
        ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

        metrics = calculate_metrics(observed, pred)

        ax.set_xlabel('Actual rentals')
        ax.set_ylabel('Predicted rentals')
        ax.set_title(
            f"{name}\nR²={metrics['r2']:.4f}, MAD={metrics['mad']:.2f}",
            fontsize=10, fontweight='bold'
        )
        ax.legend(loc='upper left', fontsize=8)

    for idx in range(len(names), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Actual vs Predicted - Hold-out Rows', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    observed: np.ndarray,
    predictions: Dict[str, np.ndarray],
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create residual distribution plots for model diagnostics.

    Args:
        observed: Ground truth values
        predictions: Predicted values keyed by model name
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(predictions)
    n_rows = (len(names) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for i, name in enumerate(names):
        ax = axes[i]
        residuals = np.asarray(observed) - np.asarray(predictions[name])

        sns.histplot(residuals, kde=True, ax=ax, bins=50, alpha=0.7)

        ax.axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
        ax.axvline(np.mean(residuals), color='green', linestyle='--',
                   linewidth=2, label=f'Mean: {np.mean(residuals):.2f}')

        ax.set_xlabel('Residual (Actual - Predicted)')
        ax.set_ylabel('Frequency')
        ax.set_title(f'{name} (Std: {np.std(residuals):.2f})', fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    for idx in range(len(names), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Residual Analysis - Error Distribution', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_error_summary(
    metrics: Dict[str, Dict[str, Any]],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of R², MAD and RMSE for each model.

    Args:
        metrics: Metrics per model name, as returned by calculate_metrics
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(metrics)
    x = np.arange(len(names))
    width = 0.6

    fig, axes = plt.subplots(1, 3, figsize=figsize)

    for ax, key, title, color in zip(
        axes,
        ['r2', 'mad', 'rmse'],
        ['R² (squared correlation)', 'Mean Absolute Deviation', 'Root Mean Squared Error'],
        ['seagreen', 'coral', 'steelblue']
    ):
        values = [metrics[name][key] for name in names]
        ax.bar(x, values, width, color=color, alpha=0.8)
        ax.set_title(title, fontweight='bold')
        ax.set_xticks(x)
        ax.set_xticklabels(names, rotation=45, ha='right')

    axes[0].set_ylim([0, 1.05])

    plt.suptitle('Model Performance Summary', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Error summary plot saved to {save_path}")

    return fig


def evaluate_models(
    observed,
    predictions: Dict[str, np.ndarray],
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Compute metrics for every model and generate the evaluation figures.

    Args:
        observed: Ground truth values of the hold-out rows
        predictions: Predicted values keyed by model name
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics, figure names and the metrics file path
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    observed = np.asarray(observed, dtype=float)
    metrics = {name: calculate_metrics(observed, pred) for name, pred in predictions.items()}

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []

    logger.info("Generating Actual vs Predicted plots...")
    plot_actual_vs_predicted(
        observed, predictions,
        save_path=str(figures_dir / "eval_actual_vs_predicted.png")
    )
    figures.append("eval_actual_vs_predicted.png")

    logger.info("Generating residual analysis...")
    plot_residuals(
        observed, predictions,
        save_path=str(figures_dir / "eval_residuals.png")
    )
    figures.append("eval_residuals.png")

    logger.info("Generating error summary...")
    plot_error_summary(
        metrics,
        save_path=str(figures_dir / "eval_error_summary.png")
    )
    figures.append("eval_error_summary.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    result = {
        'metrics': metrics,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for name, m in metrics.items():
        logger.info(f"  {name}: R²={m['r2']:.4f} MAD={m['mad']:.2f} RMSE={m['rmse']:.2f}")
    logger.info("=" * 60)

    return result


def print_evaluation_report(metrics: Dict[str, Dict[str, Any]]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics per model name
    """
    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)
    print(f"{'Model':<20} {'R²':<12} {'MAD':<12} {'RMSE':<12} {'n':<8}")
    print("-" * 70)

    for name, m in metrics.items():
        print(f"{name:<20} {m['r2']:<12.4f} {m['mad']:<12.2f} {m['rmse']:<12.2f} {m['n']:<8}")

    print("-" * 70)

    best = min(metrics, key=lambda name: metrics[name]['mad'])
    print(f"\nLowest MAD: {best} ({metrics[best]['mad']:.2f} rentals per hour)")
    print("=" * 70 + "\n")
