# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-unsafe

import logging
import math
import os
import threading
import time
from collections.abc import Generator
from contextlib import contextmanager

import numpy as np
import pandas as pd

import psutil
from numpy import typing as npt
from scipy import stats
from sklearn.model_selection import train_test_split

from recalibration.exceptions import DegenerateSplitError

logger = logging.getLogger(__name__)


def logistic_vectorized(logits: npt.ArrayLike) -> np.ndarray:
    # Numerically stable sigmoid - exp is only evaluated at non-positive values to avoid overflow
    logits = np.asarray(logits, dtype=np.float64)
    exp_neg_abs = np.exp(-np.abs(logits))
    return np.where(
        logits >= 0, 1.0 / (1.0 + exp_neg_abs), exp_neg_abs / (1.0 + exp_neg_abs)
    )


def logit(probs: np.ndarray, epsilon=1e-304) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.log((probs + epsilon) / (1 - probs + epsilon))


def make_rank_bins(predicted_scores: np.ndarray, num_bins: int) -> np.ndarray:
    """
    Assigns every score to one of `num_bins` equal-count bins by rank, like dplyr's `ntile`.

    Ties are broken by position (ordinal ranks), so every bin is non-empty as long as there are at
    least `num_bins` scores. Bin sizes differ by at most one; the lower bins take the extra rows.

    :param predicted_scores: array of scores
    :param num_bins: number of bins
    :return: integer array with the bin (1 = lowest scores, num_bins = highest scores) of each score
    """
    if num_bins <= 0:
        raise ValueError(f"num_bins must be positive, got {num_bins}.")
    predicted_scores = np.asarray(predicted_scores)
    n = len(predicted_scores)
    ranks = stats.rankdata(predicted_scores, method="ordinal").astype(int)
    smaller_size = n // num_bins
    if smaller_size == 0:
        return ranks
    n_larger = n % num_bins
    larger_size = smaller_size + (n_larger > 0)
    larger_threshold = larger_size * n_larger
    return np.where(
        ranks <= larger_threshold,
        (ranks + larger_size - 1) // larger_size,
        (ranks - larger_threshold + smaller_size - 1) // smaller_size + n_larger,
    )


def clopper_pearson_interval(
    n_positive: npt.ArrayLike,
    n: npt.ArrayLike,
    alpha: float = 0.05,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Computes the Clopper-Pearson confidence interval for binomial proportions
    (https://en.wikipedia.org/wiki/Binomial_proportion_confidence_interval#Clopper%E2%80%93Pearson_interval).

    :param n_positive: number of positive labels per group
    :param n: number of samples per group
    :param alpha: 1-alpha is the confidence level of the CI
    :return: tuple (lower, upper) of arrays
    """
    n_positive = np.asarray(n_positive, dtype=np.float64)
    n = np.asarray(n, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        lower = stats.beta.ppf(alpha / 2, n_positive, n - n_positive + 1)
        upper = stats.beta.ppf(1 - alpha / 2, n_positive + 1, n - n_positive)
    # The beta quantiles are undefined at the boundaries, where the interval is closed at 0 resp. 1.
    lower = np.where(n_positive == 0, 0.0, lower)
    upper = np.where(n_positive == n, 1.0, upper)
    return lower, upper


def next_seed(rng: np.random.Generator) -> int:
    """Draws a seed for libraries that take an integer `random_state` from the experiment generator."""
    return int(rng.integers(0, 2**32 - 1))


class TrainTestSplitWrapper:
    def __init__(
        self,
        train_size: float | int = 0.1,
        shuffle: bool = True,
        random_state: int | None = None,
        stratify: bool = True,
    ) -> None:
        """
        Customized train-test split class that allows to specify the train size.
        This is useful for the case where we want to have a single split with given train size, rather than doing k-fold crossvalidation.
        :param train_size: size of the train set, either as a fraction of the dataset or as a number of rows.
        :param shuffle: whether to shuffle the data before splitting;
        :param random_state: random state;
        :param stratify: whether to preserve the label proportions in both partitions.
        """
        self.train_size = train_size
        self.shuffle = shuffle
        self.random_state = random_state
        self.stratify = stratify

    def split(self, X, y, groups=None):
        train_idx, val_idx = train_test_split(
            np.arange(len(y)),
            train_size=self.train_size,
            shuffle=self.shuffle,
            stratify=y if self.stratify else None,
            random_state=self.random_state,
        )
        yield train_idx, val_idx


def stratified_split(
    df: pd.DataFrame,
    label_column_name: str,
    train_ratio: float,
    rng: np.random.Generator,
    min_test_rows: int = 1,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Splits a dataframe into a train and a test partition that both preserve the proportion of positive labels.

    Exactly one seed is drawn from `rng`, so the position of the split in the experiment's draw sequence is fixed.

    :param df: the dataframe to split
    :param label_column_name: name of the binary label column to stratify on
    :param train_ratio: share of rows assigned to the train partition
    :param rng: the experiment's random generator
    :param min_test_rows: smallest test partition that is accepted, e.g. the number of bins it is evaluated on
    :return: tuple (df_train, df_test); the original index is kept
    """
    if not 0 < train_ratio < 1:
        raise ValueError(f"train_ratio must be in (0, 1), got {train_ratio}.")

    labels = df[label_column_name].to_numpy()
    n_events = int(np.sum(labels == 1))
    n_non_events = len(labels) - n_events
    seed = next_seed(rng)
    if n_events == 0 or n_non_events == 0:
        raise DegenerateSplitError(
            f"Cannot split a data set with {n_events} events and {n_non_events} non-events: "
            "the training partition would contain a single class."
        )

    n_train = math.floor(train_ratio * len(labels))
    if n_train < 2:
        raise DegenerateSplitError(
            f"A train ratio of {train_ratio} on {len(labels)} rows yields {n_train} training rows, "
            "too few to hold both an event and a non-event."
        )
    n_test = len(labels) - n_train
    if n_test < min_test_rows:
        raise DegenerateSplitError(
            f"A train ratio of {train_ratio} on {len(labels)} rows leaves {n_test} test rows, at least {min_test_rows} are needed."
        )

    splitter = TrainTestSplitWrapper(
        train_size=n_train, shuffle=True, random_state=seed, stratify=True
    )
    try:
        train_idx, test_idx = next(splitter.split(df, labels))
    except ValueError as e:
        raise DegenerateSplitError(f"Stratified split failed: {e}") from e

    df_train = df.iloc[np.sort(train_idx)]
    df_test = df.iloc[np.sort(test_idx)]

    n_train_events = int(df_train[label_column_name].sum())
    if n_train_events == 0 or n_train_events == len(df_train):
        raise DegenerateSplitError(
            f"The training partition has {n_train_events} events in {len(df_train)} rows; "
            "it needs at least one event and one non-event."
        )
    n_test_events = int(df_test[label_column_name].sum())
    if n_test_events == 0 or n_test_events == len(df_test):
        raise DegenerateSplitError(
            f"The test partition has {n_test_events} events in {len(df_test)} rows; "
            "it needs at least one event and one non-event."
        )
    if n_train_events < 5:
        logger.warning(
            f"The training partition contains only {n_train_events} events. Estimates fit on it will be very noisy."
        )
    logger.info(
        f"Split {len(df)} rows into {len(df_train)} train rows ({n_train_events} events) and {len(df_test)} test rows "
        f"({n_test_events} events)."
    )
    return df_train, df_test


@contextmanager
def track_peak_rss(
    name: str, samples_per_second: float | None = 10.0
) -> Generator[None, None, None]:
    """
    Logs the resident set size of the process at the start and end of the block, and the peak observed while it ran.

    The peak is sampled from a daemon thread that only reads memory usage; the block itself runs on the calling
    thread. With `samples_per_second=None` no thread is started and the peak is taken over the start and end only.

    :param name: label of the tracked block in the log message
    :param samples_per_second: sampling frequency of the peak, or None to disable sampling
    """
    if samples_per_second is not None and samples_per_second <= 0:
        raise ValueError(
            f"samples_per_second must be positive or None, got {samples_per_second}."
        )
    # Looked up per call so that the tracked process is correct after a fork
    process = psutil.Process(os.getpid())
    start_rss = process.memory_info().rss
    peak_rss = start_rss
    stop_event = threading.Event()

    def sample() -> None:
        nonlocal peak_rss
        while not stop_event.is_set():
            peak_rss = max(peak_rss, process.memory_info().rss)
            stop_event.wait(1.0 / samples_per_second)

    sampler = (
        None
        if samples_per_second is None
        else threading.Thread(target=sample, name=f"rss-{name}", daemon=True)
    )
    start_time = time.time()
    if sampler is not None:
        sampler.start()
    try:
        yield
    finally:
        stop_event.set()
        if sampler is not None:
            sampler.join()
        end_rss = process.memory_info().rss
        peak_rss = max(peak_rss, end_rss)
        logger.info(
            f"{name}: rss_start={start_rss / 1024**2:.1f} MB, rss_end={end_rss / 1024**2:.1f} MB, "
            f"peak_observed={peak_rss / 1024**2:.1f} MB, duration={time.time() - start_time:.2f}s"
        )
