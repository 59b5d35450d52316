"""
Shared fixtures: a synthetic hourly rental table shaped like the real CSV.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from bikerental.preprocessing import preprocess_pipeline

RAW_HEADER = [
    "Date",
    "Rented Bike Count",
    "Hour",
    "Temperature(°C)",
    "Humidity(%)",
    "Wind speed (m/s)",
    "Visibility (10m)",
    "Dew point temperature(°C)",
    "Solar Radiation (MJ/m2)",
    "Rainfall(mm)",
    "Snowfall (cm)",
    "Seasons",
    "Holiday",
    "Functioning Day",
]

SEASONS = ["Winter", "Spring", "Summer", "Autumn"]


def make_rental_frame(n_days: int = 40, seed: int = 0) -> pd.DataFrame:
    """Hourly table with the canonical column names used after load_data."""
    rng = np.random.default_rng(seed)
    n = n_days * 24

    dates = np.repeat(pd.date_range("2018-01-01", periods=n_days, freq="D"), 24)
    hours = np.tile(np.arange(24), n_days)
    day = np.repeat(np.arange(n_days), 24)

    seasons = np.array(SEASONS)[(day * len(SEASONS)) // n_days]
    holiday = np.where(np.isin(day, [3, 17]), "Holiday", "No Holiday")
    functioning = np.where(np.isin(day, [8, 29]), "No", "Yes")

    temperature = rng.normal(12, 8, n)
    humidity = np.clip(rng.normal(58, 18, n), 5, 98)
    wind_speed = rng.gamma(2.0, 0.8, n)
    visibility = np.clip(2000 - rng.gamma(1.5, 300, n), 30, 2000)
    dew_point = temperature - (100 - humidity) / 5 + rng.normal(0, 2.0, n)
    solar = np.where((hours >= 7) & (hours <= 18), rng.gamma(1.5, 0.5, n), 0.0)
    rainfall = np.where(rng.random(n) < 0.08, rng.exponential(1.5, n), 0.0)
    snowfall = np.where(rng.random(n) < 0.04, rng.exponential(0.8, n), 0.0)

    demand = (
        400
        + 25 * temperature
        + 300 * np.exp(-((hours - 8) ** 2) / 4)
        + 500 * np.exp(-((hours - 18) ** 2) / 6)
        - 3 * humidity
        - 150 * (rainfall > 0)
        + rng.normal(0, 80, n)
    )
    count = np.where(functioning == "No", 0, np.clip(demand, 0, None)).round().astype(int)

    return pd.DataFrame({
        "date": dates,
        "rented_bike_count": count,
        "hour": hours,
        "temperature": temperature.round(1),
        "humidity": humidity.round(0),
        "wind_speed": wind_speed.round(1),
        "visibility": visibility.round(0),
        "dew_point_temperature": dew_point.round(1),
        "solar_radiation": solar.round(2),
        "rainfall": rainfall.round(1),
        "snowfall": snowfall.round(1),
        "seasons": seasons,
        "holiday": holiday,
        "functioning_day": functioning,
    })


def write_raw_csv(df: pd.DataFrame, path: Path) -> Path:
    """Write ``df`` with the original header and day/month/year dates."""
    raw = df.copy()
    raw["date"] = raw["date"].dt.strftime("%d/%m/%Y")
    raw.columns = RAW_HEADER
    raw.to_csv(path, index=False, encoding="latin-1")
    return path


@pytest.fixture
def rental_frame():
    """Create a 40-day synthetic rental table."""
    return make_rental_frame()


@pytest.fixture
def rental_csv(tmp_path, rental_frame):
    """Write the synthetic table as a raw CSV."""
    return write_raw_csv(rental_frame, tmp_path / "rentals.csv")


@pytest.fixture
def prepared(rental_frame):
    """Run preprocess_pipeline on the synthetic table."""
    return preprocess_pipeline(rental_frame, {'random_state': 0})
