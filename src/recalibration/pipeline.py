# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import json
import logging
import math
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from numpy import typing as npt
from recalibration import metrics, utils
from recalibration.config import DEFAULT_CONFIG, ExperimentConfig
from recalibration.exceptions import RecalibrationError
from recalibration.methods import (
    ConstantRateModel,
    LinearPredictorCalibrator,
    LogisticRegressionModel,
)
from recalibration.simulation import (
    COVARIATE_COLUMN_NAME,
    LABEL_COLUMN_NAME,
    SimulatedDataSet,
    simulate_industry_and_company,
)

logger: logging.Logger = logging.getLogger(__name__)

STAGE_CONFIGURATION: str = "configuration"
STAGE_SIMULATE: str = "simulate"
STAGE_BASE_MODEL: str = "base_model"
STAGE_SPLIT: str = "split"
STAGE_CALIBRATED_MODEL: str = "calibrated_model"
STAGE_EVALUATE: str = "evaluate"

CALIBRATED: str = "calibrated"
INDUSTRY: str = "industry"
NULL: str = "null"
NAIVE: str = "naive"


@dataclass(frozen=True)
class EvaluationReport:
    model_name: str
    auc: float
    log_loss: float
    calibration_ratio: float
    decile_table: pd.DataFrame

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_name": self.model_name,
            "auc": self.auc,
            "log_loss": self.log_loss,
            "calibration_ratio": self.calibration_ratio,
            "decile_table": self.decile_table.to_dict(orient="records"),
        }


@dataclass(frozen=True)
class ExperimentReport:
    """Structured result of a recalibration experiment; plots and narrative are rendered from it."""

    config: ExperimentConfig
    industry_default_rate: float
    company_default_rate: float
    industry_covariate_quartiles: dict[str, float]
    company_covariate_quartiles: dict[str, float]
    company_train_size: int
    company_test_size: int
    company_train_default_rate: float
    company_test_default_rate: float
    base_model_coefficients: dict[str, float]
    calibrated_model_coefficients: dict[str, float]
    calibrated: EvaluationReport
    industry: EvaluationReport
    log_losses: dict[str, float]

    @property
    def decile_tables(self) -> dict[str, pd.DataFrame]:
        return {
            CALIBRATED: self.calibrated.decile_table,
            INDUSTRY: self.industry.decile_table,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "industry_default_rate": self.industry_default_rate,
            "company_default_rate": self.company_default_rate,
            "industry_covariate_quartiles": self.industry_covariate_quartiles,
            "company_covariate_quartiles": self.company_covariate_quartiles,
            "company_train_size": self.company_train_size,
            "company_test_size": self.company_test_size,
            "company_train_default_rate": self.company_train_default_rate,
            "company_test_default_rate": self.company_test_default_rate,
            "base_model_coefficients": self.base_model_coefficients,
            "calibrated_model_coefficients": self.calibrated_model_coefficients,
            CALIBRATED: self.calibrated.to_dict(),
            INDUSTRY: self.industry.to_dict(),
            "log_losses": self.log_losses,
        }

    def to_json(self, indent: int | None = 2) -> str:
        """Serializes the report as standard JSON; non-finite numbers (e.g. an infinite calibration ratio) become null."""
        return json.dumps(
            _replace_non_finite(self.to_dict()), indent=indent, allow_nan=False
        )

    def summary(self) -> str:
        lines = [
            f"Industry default rate: {self.industry_default_rate:.4%}",
            f"Company default rate:  {self.company_default_rate:.4%}",
            f"Industry credit score: {_format_dict(self.industry_covariate_quartiles)}",
            f"Company credit score:  {_format_dict(self.company_covariate_quartiles)}",
            f"Company train/test:    {self.company_train_size}/{self.company_test_size} rows, "
            f"default rates {self.company_train_default_rate:.4%}/{self.company_test_default_rate:.4%}",
            f"Base model:            {_format_dict(self.base_model_coefficients)}",
            f"Calibrated model:      {_format_dict(self.calibrated_model_coefficients)}",
            f"AUC calibrated:        {self.calibrated.auc:.4f}",
            f"AUC industry:          {self.industry.auc:.4f}",
            "Log loss:              "
            + ", ".join(f"{name}={value:.4f}" for name, value in self.log_losses.items()),
        ]
        for name, table in self.decile_tables.items():
            lines.append(f"Decile table ({name}):")
            lines.append(table.to_string(index=False))
        return "\n".join(lines)


def _format_dict(values: dict[str, float]) -> str:
    return ", ".join(f"{name}={value:.4g}" for name, value in values.items())


def _replace_non_finite(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _replace_non_finite(v) for key, v in value.items()}
    if isinstance(value, list):
        return [_replace_non_finite(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def evaluate_predictions(
    model_name: str,
    labels: npt.NDArray,
    predictions: npt.NDArray,
    num_bins: int = metrics.DECILE_TABLE_NUM_BINS,
) -> EvaluationReport:
    return EvaluationReport(
        model_name=model_name,
        auc=metrics.auc(labels, predictions),
        log_loss=metrics.log_loss(labels, predictions),
        calibration_ratio=metrics.calibration_ratio(labels, predictions),
        decile_table=metrics.decile_table(labels, predictions, num_bins=num_bins),
    )


def evaluate_models(
    df_test: pd.DataFrame,
    calibrator: LinearPredictorCalibrator,
    null_model: ConstantRateModel,
    naive_model: ConstantRateModel,
    label_column_name: str = LABEL_COLUMN_NAME,
    num_bins: int = metrics.DECILE_TABLE_NUM_BINS,
) -> tuple[EvaluationReport, EvaluationReport, dict[str, float]]:
    """
    Scores held-out data with the calibrated model and with the uncalibrated base model, and compares their
    log loss with the null and naive baselines.

    :param df_test: held-out data of the target population
    :param calibrator: fitted calibrator; its base model provides the uncalibrated predictions
    :param null_model: constant model fitted on the calibration training data
    :param naive_model: constant model predicting no events
    :param label_column_name: name of the binary label column
    :param num_bins: number of bins of the decile tables
    :return: tuple (calibrated report, industry report, log loss per model)
    """
    df_test = calibrator.add_linear_predictor(df_test)
    labels = df_test[label_column_name].to_numpy(dtype=np.float64)
    industry_predictions = utils.logistic_vectorized(
        df_test[calibrator.linear_predictor_column_name].to_numpy()
    )
    calibrated_predictions = calibrator.predict(df_test)

    calibrated = evaluate_predictions(
        CALIBRATED, labels, calibrated_predictions, num_bins=num_bins
    )
    industry = evaluate_predictions(
        INDUSTRY, labels, industry_predictions, num_bins=num_bins
    )
    log_losses = {
        CALIBRATED: calibrated.log_loss,
        INDUSTRY: industry.log_loss,
        NULL: metrics.log_loss(labels, null_model.predict(df_test)),
        NAIVE: metrics.log_loss(labels, naive_model.predict(df_test)),
    }
    logger.info(
        f"AUC calibrated={calibrated.auc:.4f}, industry={industry.auc:.4f}; log loss {log_losses}"
    )
    return calibrated, industry, log_losses


@contextmanager
def _stage(name: str) -> Generator[None, None, None]:
    logger.info(f"Starting stage `{name}`")
    start_time = time.time()
    try:
        yield
    except RecalibrationError as e:
        if e.stage is None:
            e.stage = name
        logger.error(f"Stage `{name}` failed: {e}")
        raise
    except Exception as e:
        logger.error(f"Stage `{name}` failed with an unexpected {type(e).__name__}: {e}")
        raise
    logger.info(f"Finished stage `{name}` in {time.time() - start_time:.2f}s")


def _fit_base_model(
    df: pd.DataFrame,
    solver: str | None = None,
    max_iter: int | None = None,
) -> LogisticRegressionModel:
    return LogisticRegressionModel(
        solver=solver, max_iter=max_iter, stage=STAGE_BASE_MODEL
    ).fit(df, LABEL_COLUMN_NAME, [COVARIATE_COLUMN_NAME])


class RecalibrationExperiment:
    """
    Runs the recalibration experiment as a strictly sequential pipeline:

    1. validate the configuration;
    2. simulate the industry and then the company data set;
    3. fit the base logistic regression of default on credit score on the industry data;
    4. split the company data set into a stratified train and test partition;
    5. fit the calibration model on the base model's linear predictor for company-train, and the null baseline;
    6. evaluate calibrated and uncalibrated predictions on company-test.

    All draws come from a single generator seeded with `config.seed`, consumed in the order of the stages.
    A failing stage raises a `RecalibrationError` that names the stage; no report is produced in that case.
    The intermediate artifacts (data sets, models, partitions) are kept as attributes for inspection and plotting.
    """

    def __init__(
        self,
        config: ExperimentConfig | None = None,
        solver: str | None = None,
        max_iter: int | None = None,
        num_bins: int = metrics.DECILE_TABLE_NUM_BINS,
        memory_samples_per_second: float | None = 10.0,
    ) -> None:
        """
        :param config: experiment configuration; the default experiment if None
        :param solver: scikit-learn solver of the base and calibration fits
        :param max_iter: iteration limit of the base and calibration fits
        :param num_bins: number of bins of the decile tables; the company-test partition must have at least as many rows
        :param memory_samples_per_second: sampling rate of the peak memory logged around the base model fit, or None to
            only log memory at the start and end of the fit without a sampler thread
        """
        self.config: ExperimentConfig = DEFAULT_CONFIG if config is None else config
        self.solver = solver
        self.max_iter = max_iter
        self.num_bins = num_bins
        self.memory_samples_per_second = memory_samples_per_second

        self.industry: SimulatedDataSet | None = None
        self.company: SimulatedDataSet | None = None
        self.base_model: LogisticRegressionModel | None = None
        self.df_train: pd.DataFrame | None = None
        self.df_test: pd.DataFrame | None = None
        self.calibrator: LinearPredictorCalibrator | None = None
        self.null_model: ConstantRateModel | None = None
        self.naive_model: ConstantRateModel | None = None
        self.report: ExperimentReport | None = None

    def run(self) -> ExperimentReport:
        with _stage(STAGE_CONFIGURATION):
            self.config.validate()
        rng = np.random.default_rng(self.config.seed)

        with _stage(STAGE_SIMULATE):
            self.industry, self.company = simulate_industry_and_company(
                self.config, rng
            )

        with _stage(STAGE_BASE_MODEL), utils.track_peak_rss(
            STAGE_BASE_MODEL, self.memory_samples_per_second
        ):
            self.base_model = _fit_base_model(
                self.industry.df, solver=self.solver, max_iter=self.max_iter
            )

        with _stage(STAGE_SPLIT):
            self.df_train, self.df_test = utils.stratified_split(
                self.company.df,
                label_column_name=LABEL_COLUMN_NAME,
                train_ratio=self.config.train_ratio,
                rng=rng,
                min_test_rows=self.num_bins,
            )

        with _stage(STAGE_CALIBRATED_MODEL):
            self.calibrator = LinearPredictorCalibrator(
                self.base_model,
                solver=self.solver,
                max_iter=self.max_iter,
                stage=STAGE_CALIBRATED_MODEL,
            ).fit(self.df_train, LABEL_COLUMN_NAME)
            self.null_model = ConstantRateModel().fit(self.df_train, LABEL_COLUMN_NAME)
            self.naive_model = ConstantRateModel(rate=0.0)

        with _stage(STAGE_EVALUATE):
            calibrated, industry, log_losses = evaluate_models(
                self.df_test,
                calibrator=self.calibrator,
                null_model=self.null_model,
                naive_model=self.naive_model,
                num_bins=self.num_bins,
            )

        self.report = ExperimentReport(
            config=self.config,
            industry_default_rate=self.industry.default_rate,
            company_default_rate=self.company.default_rate,
            industry_covariate_quartiles=self.industry.covariate_quartiles(),
            company_covariate_quartiles=self.company.covariate_quartiles(),
            company_train_size=len(self.df_train),
            company_test_size=len(self.df_test),
            company_train_default_rate=float(self.df_train[LABEL_COLUMN_NAME].mean()),
            company_test_default_rate=float(self.df_test[LABEL_COLUMN_NAME].mean()),
            base_model_coefficients=self.base_model.coefficients,
            calibrated_model_coefficients=self.calibrator.coefficients,
            calibrated=calibrated,
            industry=industry,
            log_losses=log_losses,
        )
        return self.report


def run_experiment(
    config: ExperimentConfig | None = None,
    solver: str | None = None,
    max_iter: int | None = None,
) -> ExperimentReport:
    """Runs the recalibration experiment for `config` (the default experiment if None) and returns its report."""
    return RecalibrationExperiment(
        config=config, solver=solver, max_iter=max_iter
    ).run()
