"""
Data Loader Module
==================

Handles CSV ingestion, validation, and basic data quality checks for the
hourly bike-rental dataset.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load the 14-column rental CSV, failing fast on bad rows
    - validate_data: Check hourly coverage and category constraints
    - get_data_summary: Generate basic statistics
"""

import os
import re
import logging
from pathlib import Path
from typing import Dict, Any, List, Tuple

import pandas as pd
import numpy as np
import yaml

logger = logging.getLogger(__name__)

# Canonical column names paired with the letters-only prefix of the raw header
COLUMN_HEADERS: List[Tuple[str, str]] = [
    ("date", "date"),
    ("rented_bike_count", "rentedbikecount"),
    ("hour", "hour"),
    ("temperature", "temperature"),
    ("humidity", "humidity"),
    ("wind_speed", "windspeed"),
    ("visibility", "visibility"),
    ("dew_point_temperature", "dewpointtemperature"),
    ("solar_radiation", "solarradiation"),
    ("rainfall", "rainfall"),
    ("snowfall", "snowfall"),
    ("seasons", "seasons"),
    ("holiday", "holiday"),
    ("functioning_day", "functioningday"),
]

COLUMNS = [name for name, _ in COLUMN_HEADERS]
TARGET_COLUMN = "rented_bike_count"
CATEGORICAL_COLUMNS = ["seasons", "holiday", "functioning_day"]
NUMERIC_COLUMNS = [
    c for c in COLUMNS if c not in CATEGORICAL_COLUMNS and c != "date"
]

EXPECTED_CATEGORIES: Dict[str, List[str]] = {
    "seasons": ["Winter", "Spring", "Summer", "Autumn"],
    "holiday": ["No Holiday", "Holiday"],
    "functioning_day": ["Yes", "No"],
}


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    logger.info(f"Loaded configuration from {config_path}")
    return config or {}


def _header_key(name: str) -> str:
    return re.sub(r'[^a-z]', '', str(name).lower())


def _check_header(columns: List[str]) -> None:
    if len(columns) != len(COLUMN_HEADERS):
        raise ValueError(
            f"Expected {len(COLUMN_HEADERS)} columns, but found {len(columns)}. "
            f"Columns: {list(columns)}"
        )

    for position, (raw, (name, key)) in enumerate(zip(columns, COLUMN_HEADERS)):
        if not _header_key(raw).startswith(key):
            raise ValueError(
                f"Unexpected header at position {position}: '{raw}' "
                f"(expected a '{name}' column)"
            )


def load_data(
    file_path: str,
    encoding: str = "latin-1",
    date_format: str = "%d/%m/%Y"
) -> pd.DataFrame:
    """
    Load the hourly rental CSV and coerce every column to its expected type.

    Any malformed row aborts the load; nothing is partially ingested.

    Args:
        file_path: Path to the CSV file
        encoding: Text encoding of the file (headers contain non-ASCII units)
        date_format: strftime format of the date column (day-month-year)

    Returns:
        DataFrame with canonical snake_case columns, sorted by date and hour

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the header, a date, a number or an hour is malformed,
            any cell is missing, or an hour is missing or duplicated
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = pd.read_csv(file_path, encoding=encoding)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    _check_header(list(df.columns))
    df.columns = COLUMNS

    missing = df.isnull().sum()
    if missing.sum() > 0:
        raise ValueError(
            f"Missing values in input: {missing[missing > 0].to_dict()}"
        )

    df["date"] = pd.to_datetime(df["date"], format=date_format)

    for col in NUMERIC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="raise")

    for col in CATEGORICAL_COLUMNS:
        df[col] = df[col].astype(str).str.strip()

    bad_hours = (np.mod(df["hour"], 1) != 0) | ~df["hour"].between(0, 23)
    if bad_hours.any():
        bad = df.loc[bad_hours, "hour"].unique().tolist()
        raise ValueError(f"Hour values must be integers in 0..23, found: {bad}")
    df["hour"] = df["hour"].astype(int)

    df = df.sort_values(["date", "hour"]).reset_index(drop=True)

    duplicates, expected_rows = _hourly_coverage(df)
    if duplicates or len(df) != expected_rows:
        raise ValueError(
            f"Incomplete hourly series: expected {expected_rows} rows from "
            f"{df['date'].min().date()} to {df['date'].max().date()}, "
            f"found {len(df)} ({duplicates} duplicated date/hour rows)"
        )

    return df


def _hourly_coverage(df: pd.DataFrame) -> Tuple[int, int]:
    """Number of duplicated (date, hour) rows and the row count a gap-free span needs."""
    duplicates = int(df.duplicated(subset=["date", "hour"]).sum())
    n_days = (df["date"].max() - df["date"].min()).days + 1
    return duplicates, n_days * 24


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for the hourly rental table.

    Checks:
        - One row per (date, hour)
        - No missing hours over the covered date span
        - Categorical columns hold only the expected values
        - Rental counts are non-negative

    Args:
        df: DataFrame to validate
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Duplicate hours
    duplicates, expected_rows = _hourly_coverage(df)
    if duplicates > 0:
        issue = f"Duplicate date/hour rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 2: Hourly coverage
    report["date_range"] = (str(df["date"].min().date()), str(df["date"].max().date()))
    report["expected_rows"] = expected_rows
    if len(df) - duplicates != expected_rows:
        issue = f"Missing hours: expected {expected_rows} rows, found {len(df) - duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 3: Category values
    for col, expected in EXPECTED_CATEGORIES.items():
        unexpected = sorted(set(df[col].unique()) - set(expected))
        if unexpected:
            issue = f"Column '{col}' has unexpected values: {unexpected}"
            report["issues"].append(issue)
            logger.warning(issue)

    # Check 4: Target range
    negative = int((df[TARGET_COLUMN] < 0).sum())
    if negative > 0:
        issue = f"Negative rental counts: {negative}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate comprehensive summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "statistics": {},
        "categories": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "25%": float(df[col].quantile(0.25)),
            "50%": float(df[col].quantile(0.50)),
            "75%": float(df[col].quantile(0.75)),
            "max": float(df[col].max()),
            "skew": float(df[col].skew()),
            "kurtosis": float(df[col].kurtosis())
        }

    for col in CATEGORICAL_COLUMNS:
        if col in df.columns:
            summary["categories"][col] = {
                str(k): int(v) for k, v in df[col].value_counts().items()
            }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Date range: {df['date'].min().date()} to {df['date'].max().date()}")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.describe().round(4).to_string())
    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_config()
        print("Configuration loaded successfully!")
        print(f"Data path: {config['data']['path']}")
    except FileNotFoundError as e:
        print(f"Config not found: {e}")
        config = {}

    data_path = config.get('data', {}).get('path', "data/raw/SeoulBikeData.csv")
    if os.path.exists(data_path):
        df = load_data(data_path)
        print_data_summary(df)
        is_valid, report = validate_data(df, strict=False)
        print(f"Validation passed: {is_valid}")
    else:
        print(f"No data file found at {data_path}")
        print("Place the rental CSV there to test the data loader.")
