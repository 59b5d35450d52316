"""
Report Module
=============

Writes the human-readable analysis report (Markdown) that ties together the
dataset summary, preprocessing decisions, hold-out metrics, the ensemble and
the cross-validation results.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List
from datetime import datetime

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _fmt(value: float, digits: int = 2) -> str:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return "NaN"
    return f"{value:.{digits}f}"


def _metrics_table(metrics: Dict[str, Dict[str, Any]]) -> List[str]:
    lines = [
        "| Model | R² | MAD | RMSE | n |",
        "|---|---|---|---|---|",
    ]
    for name, m in metrics.items():
        lines.append(f"| {name} | {_fmt(m['r2'], 4)} | {_fmt(m['mad'])} | {_fmt(m['rmse'])} | {m['n']} |")
    return lines


def _frame_block(frame: pd.DataFrame) -> List[str]:
    return ["```", frame.to_string(), "```"]


def _profile_text(profile: pd.DataFrame) -> str:
    """Describe the hour-by-season mean rental profile."""
    peak_hour = int(profile.mean(axis=1).idxmax())
    peaks = ", ".join(f"{season} {int(profile[season].idxmax())}:00" for season in profile.columns)
    season_means = profile.mean()
    low, high = season_means.idxmin(), season_means.idxmax()
    return (
        f"Rentals peak at {peak_hour}:00 on average. Busiest hour by season: {peaks}. "
        f"Mean hourly rentals range from {season_means[low]:.0f} in {low} "
        f"to {season_means[high]:.0f} in {high}."
    )


def build_report(results: Dict[str, Any]) -> str:
    """
    Render the report text.

    Args:
        results: Pipeline results as assembled by ``main.run_full_pipeline``

    Returns:
        Markdown document
    """
    summary = results['data_summary']
    data = results['preprocessing']
    lines = [
        "# Hourly Bike Rental Demand - Analysis Report",
        "",
        f"_Generated {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}_",
        "",
        "## 1. Data",
        "",
        f"The dataset holds {summary['shape'][0]} hourly observations and "
        f"{summary['shape'][1]} columns covering "
        f"{results['validation']['date_range'][0]} to {results['validation']['date_range'][1]}.",
        "",
    ]

    lines += ["All hours are present exactly once and every category value is expected.", ""]

    stats = pd.DataFrame(summary['statistics']).T[['mean', 'std', 'min', 'max', 'skew']].round(2)
    lines += ["Summary statistics:", ""] + _frame_block(stats) + [""]

    eda = results.get('eda')
    if eda:
        lines += ["## 2. Exploration", ""]
        profile = eda.get('hourly_profile')
        if profile is not None and len(profile):
            lines += [_profile_text(profile), ""]
        lines += [f"![{name}](figures/{name})" for name in eda['figures']] + [""]

    report = data.outlier_report
    lines += [
        "## 3. Preprocessing",
        "",
        f"Rows with any weather z-score beyond ±{report['threshold']} were removed in a single "
        f"joint pass: {report['n_removed']} of {report['n_before']} rows "
        f"({report['n_removed'] / max(report['n_before'], 1):.1%}).",
        "",
        "| Column | Rows beyond threshold |",
        "|---|---|",
    ]
    lines += [f"| {col} | {count} |" for col, count in report['by_column'].items()] + [""]

    if data.medians:
        lines += [
            f"For demonstration, missing values were injected into {data.missing_fraction:.0%} of rows "
            "per numeric column of a copy of the table and imputed with each column's median "
            "(the models are trained on the observed values):",
            "",
        ]
        lines += [f"- {col}: {median:.3f}" for col, median in data.medians.items()] + [""]

    lines += ["Variance-stabilizing transforms (Shapiro-Wilk on a 5000-row subsample):", ""]
    transforms = data.stabilizer.summary()
    if len(transforms):
        lines += _frame_block(transforms[['column', 'transform', 'offset', 'none_w', 'sqrt_w', 'log_w', 'inverse_w']].round(4))
    lines.append("")
    untouched = [c for c, choice in data.stabilizer.choices_.items() if choice['transform'] == 'none']
    if untouched:
        lines += [f"No transform improved normality enough for: {', '.join(untouched)}.", ""]

    lines += ["## 4. Models", ""]
    tuning = results.get('knn_tuning')
    if tuning:
        lines += [
            f"kNN started at k = {tuning['initial_k']} (square root of the training rows); "
            f"sweeping k over {min(tuning['mad_by_k'])}..{max(tuning['mad_by_k'])} selected "
            f"k = {tuning['best_k']} with validation MAD {_fmt(tuning['mad_by_k'][tuning['best_k']])}.",
            "",
        ]
    dropped = results.get('linear_dropped') or []
    if dropped:
        lines += [f"The linear model dropped non-significant covariates: {', '.join(dropped)}.", ""]

    lines += ["Hold-out performance:", ""] + _metrics_table(results['evaluation']['metrics']) + [""]
    lines += [f"![{name}](figures/{name})" for name in results['evaluation']['figures']] + [""]

    ensemble = results.get('ensemble')
    if ensemble:
        lines += [
            "## 5. Ensemble",
            "",
            f"Weights: {ensemble['weights']}.",
            "",
        ] + _metrics_table(ensemble['metrics']) + [""]

    cv = results.get('cross_validation')
    if cv:
        lines += [
            f"## 6. {cv['n_folds']}-Fold Cross-Validation",
            "",
            f"Fold sizes: {cv['fold_sizes']}.",
            "",
            "| Model | " + " | ".join(f"Fold {i + 1}" for i in range(cv['n_folds'])) + " | Mean MAD |",
            "|---|" + "---|" * (cv['n_folds'] + 1),
        ]
        for name, values in cv['mad'].items():
            lines.append(
                f"| {name} | " + " | ".join(_fmt(v) for v in values) + f" | {_fmt(cv['mean_mad'][name])} |"
            )
        lines.append("")

    return "\n".join(lines)


def write_report(results: Dict[str, Any], output_path: str = "reports/bike_rental_report.md") -> str:
    """
    Write the Markdown report to ``output_path``.

    Returns:
        Path of the written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(build_report(results))

    logger.info(f"Report written to {output_path}")
    return str(output_path)
