"""
Bike Rental Analysis
====================

Exploratory analysis and regression modelling of hourly bike-rental demand.

Modules:
    - data_loader: CSV ingestion, configuration and validation
    - eda: Exploratory Data Analysis and figures
    - preprocessing: Outliers, factors, imputation, transforms, encoding
    - model: kNN, decision tree (plain or bagged) and OLS regressors
    - evaluation: R², MAD and RMSE plus diagnostic plots
    - ensemble: Weighted average of several fitted models
    - cross_validation: K-fold harness reporting mean MAD per model
    - report: Markdown report writer
"""

__version__ = "1.0.0"
__author__ = "Bike Rental Analytics Team"
