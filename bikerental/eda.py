"""
Exploratory Data Analysis (EDA) Module
======================================

Analysis and visualization of the hourly rental table.

Functions:
    - plot_distributions: Histograms with normality test per numeric column
    - plot_correlation_matrix: Correlation heatmap
    - plot_box_plots: Standardized box plots for outlier inspection
    - plot_hourly_profile: Mean rentals per hour of day, by season
    - plot_rentals_by_category: Rental counts per season / holiday / functioning day
    - plot_transforms: Skewed columns before and after stabilization
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .data_loader import CATEGORICAL_COLUMNS, EXPECTED_CATEGORIES, NUMERIC_COLUMNS, TARGET_COLUMN
from .preprocessing import OUTLIER_COLUMNS, standardize

logger = logging.getLogger(__name__)

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 16),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for numeric columns.

    Args:
        df: DataFrame with the rental data
        columns: Columns to plot (default: all numeric columns)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    columns = columns or [c for c in NUMERIC_COLUMNS if c in df.columns]
    n_cols = len(columns)
    n_rows = (n_cols + 1) // 2

    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, col in enumerate(columns):
        ax = axes[idx]

        sns.histplot(df[col], kde=True, ax=ax, bins=50, alpha=0.7)

        mean_val = df[col].mean()
        median_val = df[col].median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        _, p_value = stats.normaltest(df[col].dropna())
        normality = "Normal" if p_value > 0.05 else "Non-Normal"

        ax.set_title(
            f'{col} ({normality}, skew={df[col].skew():.2f})',
            fontsize=10, fontweight='bold'
        )
        ax.legend(fontsize=8)

    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (11, 9),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df.select_dtypes(include=[np.number]).corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_box_plots(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    threshold: float = 3.0,
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Box plots of z-scored weather columns with the outlier cut-off marked.

    Args:
        df: DataFrame with the rental data
        columns: Columns to show (default: the outlier-screened columns)
        threshold: Z-score cut-off drawn as horizontal lines
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    columns = columns or OUTLIER_COLUMNS
    scaled = standardize(df, columns)[columns]

    fig, ax = plt.subplots(figsize=figsize)

    scaled.boxplot(ax=ax, grid=True)
    ax.axhline(threshold, color='red', linestyle='--', alpha=0.6)
    ax.axhline(-threshold, color='red', linestyle='--', alpha=0.6)
    ax.set_title('Box Plots (Standardized) - Outlier Detection', fontsize=14, fontweight='bold')
    ax.set_ylabel('Z-score')
    ax.tick_params(axis='x', rotation=45)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Box plots saved to {save_path}")

    return fig


def plot_hourly_profile(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Mean rentals per hour of day, one line per season.

    Returns:
        Tuple of (Figure, hour × season table of mean rentals)
    """
    profile = df.pivot_table(
        index='hour', columns='seasons', values=TARGET_COLUMN, aggfunc='mean', observed=True
    )
    profile = profile.reindex(columns=[s for s in EXPECTED_CATEGORIES['seasons'] if s in profile.columns])

    fig, ax = plt.subplots(figsize=figsize)
    profile.plot(ax=ax, marker='o', linewidth=1.5)
    ax.set_xlabel('Hour of day')
    ax.set_ylabel('Mean rented bikes')
    ax.set_xticks(range(0, 24))
    ax.set_title('Hourly Rental Profile by Season', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Hourly profile saved to {save_path}")

    return fig, profile


def plot_rentals_by_category(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (15, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Box plots of rental counts for each level of each categorical column."""
    fig, axes = plt.subplots(1, len(CATEGORICAL_COLUMNS), figsize=figsize)

    for ax, col in zip(axes, CATEGORICAL_COLUMNS):
        sns.boxplot(
            data=df, x=col, y=TARGET_COLUMN, ax=ax,
            order=EXPECTED_CATEGORIES[col]
        )
        ax.set_title(col, fontsize=10, fontweight='bold')
        ax.set_xlabel('')
        ax.set_ylabel('Rented bikes')

    plt.suptitle('Rentals by Calendar Factor', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Category plots saved to {save_path}")

    return fig


def plot_transforms(
    original: pd.DataFrame,
    transformed: pd.DataFrame,
    choices: Dict[str, Dict[str, Any]],
    figsize: Tuple[int, int] = (12, 14),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histograms of each skewed column before (left) and after (right) its
    selected variance-stabilizing transform.
    """
    columns = list(choices)
    fig, axes = plt.subplots(len(columns), 2, figsize=figsize, squeeze=False)

    for row, col in enumerate(columns):
        name = choices[col]['transform']
        sns.histplot(original[col], bins=40, ax=axes[row, 0], color='steelblue')
        sns.histplot(transformed[col], bins=40, ax=axes[row, 1], color='coral')
        axes[row, 0].set_title(f'{col} (raw)', fontsize=10)
        axes[row, 1].set_title(f'{col} ({name})', fontsize=10)

    plt.suptitle('Variance-Stabilizing Transforms', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Transform comparison saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: DataFrame to analyze (as returned by load_data)
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "correlation_matrix": None,
        "hourly_profile": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Plotting distributions...")
    plot_distributions(df, save_path=str(output_dir / "01_distributions.png"))
    report["figures"].append("01_distributions.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df,
        save_path=str(output_dir / "02_correlation_matrix.png")
    )
    report["figures"].append("02_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    logger.info("Creating box plots for outlier detection...")
    plot_box_plots(df, save_path=str(output_dir / "03_box_plots.png"))
    report["figures"].append("03_box_plots.png")

    logger.info("Computing hourly rental profile...")
    _, profile = plot_hourly_profile(df, save_path=str(output_dir / "04_hourly_profile.png"))
    report["figures"].append("04_hourly_profile.png")
    report["hourly_profile"] = profile

    logger.info("Plotting rentals by calendar factor...")
    plot_rentals_by_category(df, save_path=str(output_dir / "05_rentals_by_category.png"))
    report["figures"].append("05_rentals_by_category.png")

    for col in df.select_dtypes(include=[np.number]).columns:
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max()),
            "skew": float(df[col].skew()),
            "kurtosis": float(df[col].kurtosis())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> None:
    """
    Print insights about strongly correlated variables.

    Args:
        corr_matrix: Correlation matrix DataFrame
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": corr_val
                })

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in sorted(strong_corr, key=lambda x: abs(x["correlation"]), reverse=True):
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    if TARGET_COLUMN in corr_matrix.columns:
        target_corr = corr_matrix[TARGET_COLUMN].drop(TARGET_COLUMN)
        strongest = target_corr.abs().idxmax()
        print(f"\nStrongest driver of {TARGET_COLUMN}: {strongest} (r = {target_corr[strongest]:.3f})")

    print("=" * 50 + "\n")
