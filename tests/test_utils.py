# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-unsafe

import logging
import math
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from recalibration import utils
from recalibration.exceptions import DegenerateSplitError


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def rare_event_df(rng):
    n_samples = 2000
    labels = np.zeros(n_samples, dtype=int)
    labels[rng.choice(n_samples, size=60, replace=False)] = 1
    return pd.DataFrame({"credit_score": rng.lognormal(3, 1, n_samples), "default": labels})


@pytest.mark.parametrize(
    "log_odds, expected",
    [
        (0, 0.5),
        (1, 1 / (1 + math.exp(-1))),
        (-1, 1 / (1 + math.exp(1))),
        (100, 1.0),
        (-100, 3.720075976020836e-44),
        (1e20, 1.0),
        (-1e20, 0.0),
        (-710, 4.47e-309),
    ],
)
def test_logistic_vectorized(log_odds, expected):
    result = utils.logistic_vectorized(np.array([log_odds]))[0]
    assert math.isclose(result, expected, abs_tol=1e-310)


def test_logistic_vectorized_with_extreme_values_does_not_overflow():
    with np.errstate(over="raise"):
        result = utils.logistic_vectorized(np.array([-5000.0, -800.0, 800.0, 5000.0]))
    np.testing.assert_array_equal(result, np.array([0.0, 0.0, 1.0, 1.0]))


@pytest.mark.parametrize(
    "probs",
    [
        np.array([0.1, 0.2, 0.3, 0.4, 0.5]),
        np.array([0.6, 0.7, 0.8, 0.9]),
    ],
)
def test_logit(probs):
    result = utils.logit(probs)
    np.testing.assert_allclose(result, np.log(probs / (1 - probs)), rtol=1e-9)


@pytest.mark.parametrize(
    "probabilities", [(np.linspace(0.1, 0.9, num=10)), (np.linspace(0.1, 0.9, num=100))]
)
def test_logistic_is_inverse_function_of_logit(probabilities):
    result = utils.logistic_vectorized(utils.logit(probabilities))
    np.testing.assert_allclose(result, probabilities, rtol=1e-9)


def test_logit_of_zero_and_one_is_finite():
    result = utils.logit(np.array([0.0, 1.0]))
    assert np.all(np.isfinite(result))
    assert result[0] < -600
    assert result[1] > 600


def test_make_rank_bins_gives_expected_result():
    scores = np.array([0.9, 0.1, 0.5, 0.3, 0.7, 0.2, 0.8, 0.4, 0.6, 0.0])
    result = utils.make_rank_bins(scores, 5)
    np.testing.assert_array_equal(result, np.array([5, 1, 3, 2, 4, 2, 5, 3, 4, 1]))


def test_make_rank_bins_matches_ntile_for_uneven_sizes():
    # dplyr::ntile(1:12, 5) gives 1 1 1 2 2 2 3 3 4 4 5 5
    result = utils.make_rank_bins(np.arange(12), 5)
    np.testing.assert_array_equal(result, np.array([1, 1, 1, 2, 2, 2, 3, 3, 4, 4, 5, 5]))


def test_make_rank_bins_gives_equal_count_bins_with_ties():
    scores = np.zeros(100)
    scores[:7] = 1.0
    result = utils.make_rank_bins(scores, 10)
    assert np.all(np.bincount(result)[1:] == 10)


def test_make_rank_bins_rejects_non_positive_num_bins():
    with pytest.raises(ValueError):
        utils.make_rank_bins(np.arange(10), 0)


def test_clopper_pearson_interval_contains_proportion():
    lower, upper = utils.clopper_pearson_interval(np.array([3, 50]), np.array([100, 100]))
    assert np.all(lower < np.array([0.03, 0.5]))
    assert np.all(upper > np.array([0.03, 0.5]))
    # Known value: exact 95% interval for 3 out of 100
    assert lower[0] == pytest.approx(0.00623, abs=1e-4)
    assert upper[0] == pytest.approx(0.08518, abs=1e-4)


def test_clopper_pearson_interval_is_closed_at_boundaries():
    lower, upper = utils.clopper_pearson_interval(np.array([0, 10]), np.array([10, 10]))
    assert lower[0] == 0.0
    assert upper[1] == 1.0
    assert 0 < upper[0] < 1
    assert 0 < lower[1] < 1


def test_next_seed_is_deterministic_for_seeded_generator():
    assert utils.next_seed(np.random.default_rng(7)) == utils.next_seed(
        np.random.default_rng(7)
    )


def test_stratified_split_partitions_the_data(rng, rare_event_df):
    df_train, df_test = utils.stratified_split(rare_event_df, "default", 0.1, rng)

    assert len(df_train) + len(df_test) == len(rare_event_df)
    assert len(df_train) == 200
    assert df_train.index.intersection(df_test.index).empty
    assert set(df_train.index).union(df_test.index) == set(rare_event_df.index)


def test_stratified_split_preserves_event_rate(rng, rare_event_df):
    df_train, df_test = utils.stratified_split(rare_event_df, "default", 0.1, rng)

    overall_rate = rare_event_df["default"].mean()
    assert df_train["default"].sum() == 6
    assert df_train["default"].mean() == pytest.approx(overall_rate, abs=0.005)
    assert df_test["default"].mean() == pytest.approx(overall_rate, abs=0.005)


def test_stratified_split_is_deterministic(rare_event_df):
    df_train_1, _ = utils.stratified_split(
        rare_event_df, "default", 0.1, np.random.default_rng(1)
    )
    df_train_2, _ = utils.stratified_split(
        rare_event_df, "default", 0.1, np.random.default_rng(1)
    )
    pd.testing.assert_frame_equal(df_train_1, df_train_2)


def test_stratified_split_consumes_one_draw_of_the_generator(rare_event_df):
    rng = np.random.default_rng(3)
    utils.stratified_split(rare_event_df, "default", 0.1, rng)

    reference_rng = np.random.default_rng(3)
    utils.next_seed(reference_rng)
    assert rng.integers(0, 1000) == reference_rng.integers(0, 1000)


@pytest.mark.parametrize(
    "labels, train_ratio",
    [
        ([0] * 100, 0.1),
        ([1] * 100, 0.1),
        ([0, 0, 0, 1, 0], 0.1),
        ([0] * 18 + [1] * 2, 0.1),
    ],
)
def test_stratified_split_raises_on_degenerate_training_partition(rng, labels, train_ratio):
    df = pd.DataFrame({"credit_score": np.arange(len(labels)), "default": labels})
    with pytest.raises(DegenerateSplitError):
        utils.stratified_split(df, "default", train_ratio, rng)


def test_stratified_split_warns_when_few_events(rng, caplog):
    labels = np.zeros(1000, dtype=int)
    labels[:20] = 1
    df = pd.DataFrame({"credit_score": np.arange(1000), "default": labels})
    with caplog.at_level(logging.WARNING, logger="recalibration.utils"):
        df_train, _ = utils.stratified_split(df, "default", 0.1, rng)
    assert df_train["default"].sum() == 2
    assert "only 2 events" in caplog.text


def test_stratified_split_rejects_invalid_ratio(rng, rare_event_df):
    with pytest.raises(ValueError):
        utils.stratified_split(rare_event_df, "default", 1.0, rng)


def test_train_test_split_wrapper_yields_single_split():
    y = np.array([0, 1] * 50)
    splits = list(
        utils.TrainTestSplitWrapper(train_size=0.2, random_state=0).split(None, y)
    )
    assert len(splits) == 1
    train_idx, val_idx = splits[0]
    assert len(train_idx) == 20
    assert len(val_idx) == 80
    assert y[train_idx].mean() == 0.5


def test_stratified_split_raises_when_test_partition_is_too_small(rng):
    df = pd.DataFrame({"credit_score": np.arange(100), "default": [0, 1] * 50})
    with pytest.raises(DegenerateSplitError, match="10 test rows"):
        utils.stratified_split(df, "default", 0.9, rng, min_test_rows=11)

    _, df_test = utils.stratified_split(df, "default", 0.9, rng, min_test_rows=10)
    assert len(df_test) == 10


def test_track_peak_rss_logs_memory(caplog):
    with caplog.at_level(logging.INFO, logger="recalibration.utils"):
        with utils.track_peak_rss("fit", samples_per_second=100.0):
            values = list(range(100000))
    assert len(values) == 100000
    assert "fit: rss_start=" in caplog.text
    assert "peak_observed=" in caplog.text


def test_track_peak_rss_without_sampling_starts_no_thread(caplog):
    with patch.object(utils.threading, "Thread") as mock_thread:
        with caplog.at_level(logging.INFO, logger="recalibration.utils"):
            with utils.track_peak_rss("fit", samples_per_second=None):
                pass
    mock_thread.assert_not_called()
    assert "fit: rss_start=" in caplog.text


def test_track_peak_rss_logs_when_block_raises(caplog):
    with caplog.at_level(logging.INFO, logger="recalibration.utils"):
        with pytest.raises(RuntimeError):
            with utils.track_peak_rss("fit", samples_per_second=100.0):
                raise RuntimeError("fit failed")
    assert "fit: rss_start=" in caplog.text


@pytest.mark.parametrize("samples_per_second", [0, -1.0])
def test_track_peak_rss_rejects_non_positive_sampling_rate(samples_per_second):
    with pytest.raises(ValueError):
        with utils.track_peak_rss("fit", samples_per_second=samples_per_second):
            pass
