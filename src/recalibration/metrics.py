# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import logging

import numpy as np
import pandas as pd
from numpy import typing as npt
from recalibration import utils
from scipy import special
from sklearn import metrics as skmetrics

logger: logging.Logger = logging.getLogger(__name__)

# Predictions are clamped to [LOG_LOSS_EPSILON, 1 - LOG_LOSS_EPSILON] before taking logs, so that a single
# confident miss (e.g. the naive model predicting 0 for a default) contributes a large but finite loss.
LOG_LOSS_EPSILON: float = 1e-15
DECILE_TABLE_NUM_BINS: int = 10
DECILE_TABLE_COLUMNS: list[str] = ["decile", "n", "actual", "predicted", "lower", "upper"]


def auc(
    labels: npt.NDArray,
    predictions: npt.NDArray,
    sample_weight: npt.NDArray | None = None,
) -> float:
    """Area under the ROC curve of `predictions` against binary `labels`."""
    return float(
        skmetrics.roc_auc_score(labels, predictions, sample_weight=sample_weight)
    )


def log_loss(
    labels: npt.NDArray,
    predictions: npt.NDArray,
    epsilon: float | None = LOG_LOSS_EPSILON,
    sample_weight: npt.NDArray | None = None,
) -> float:
    """
    Negative mean log-likelihood of binary labels under the predicted probabilities.

    :param labels: array of 0/1 labels
    :param predictions: array of predicted probabilities
    :param epsilon: predictions are clamped to [epsilon, 1 - epsilon]. If None, predictions are used as they are and
        a prediction of exactly 0 (1) for a positive (negative) label yields an infinite loss.
    :param sample_weight: array of weights for each instance. If None, then all instances are considered to have weight 1
    :return: the log loss
    """
    labels = np.asarray(labels, dtype=np.float64)
    predictions = np.asarray(predictions, dtype=np.float64)
    if labels.shape != predictions.shape:
        raise ValueError(
            f"labels and predictions must have the same shape, got {labels.shape} and {predictions.shape}."
        )
    if len(labels) == 0:
        raise ValueError("Cannot compute the log loss of an empty array.")
    if epsilon is not None:
        predictions = np.clip(predictions, epsilon, 1 - epsilon)
    # xlogy(0, 0) == 0, so only observed outcomes contribute to the likelihood
    with np.errstate(divide="ignore"):
        log_likelihood = special.xlogy(labels, predictions) + special.xlogy(
            1 - labels, 1 - predictions
        )
    return float(-np.average(log_likelihood, weights=sample_weight))


def calibration_ratio(
    labels: npt.NDArray,
    predictions: npt.NDArray,
) -> float:
    """Ratio of the sum of predictions to the number of positive labels; 1 means calibrated in the large."""
    n_positive = float(np.sum(labels))
    if n_positive == 0:
        return np.inf
    return float(np.sum(predictions)) / n_positive


def decile_table(
    labels: npt.NDArray,
    predictions: npt.NDArray,
    num_bins: int = DECILE_TABLE_NUM_BINS,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Calibration curve data: mean actual label vs mean predicted probability within equal-count bins of the
    predictions, ordered by ascending prediction.

    :param labels: array of 0/1 labels
    :param predictions: array of predicted probabilities
    :param num_bins: number of rank based bins (10 gives deciles)
    :param alpha: 1-alpha is the confidence level of the Clopper-Pearson interval around the actual rate
    :return: dataframe with one row per bin and columns decile, n, actual, predicted, lower, upper
    """
    labels = np.asarray(labels, dtype=np.float64)
    predictions = np.asarray(predictions, dtype=np.float64)
    assert not np.any(np.isnan(predictions)), "predictions must not contain NaNs"
    if len(predictions) < num_bins:
        raise ValueError(
            f"At least {num_bins} predictions are needed for {num_bins} non-empty bins, got {len(predictions)}."
        )

    binned = pd.DataFrame(
        {
            "decile": utils.make_rank_bins(predictions, num_bins),
            "label": labels,
            "prediction": predictions,
        }
    )
    table = (
        binned.groupby("decile")
        .agg(
            n=("label", "size"),
            n_positive=("label", "sum"),
            actual=("label", "mean"),
            predicted=("prediction", "mean"),
        )
        .reset_index()
    )
    table["lower"], table["upper"] = utils.clopper_pearson_interval(
        table["n_positive"].to_numpy(), table["n"].to_numpy(), alpha=alpha
    )
    return table[DECILE_TABLE_COLUMNS]
