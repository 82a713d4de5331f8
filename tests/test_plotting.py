# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-unsafe

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
from matplotlib import pyplot as plt
from plotly import graph_objects as go

from recalibration import metrics, plotting


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def decile_tables(rng):
    predictions = rng.uniform(0.001, 0.1, size=500)
    labels = rng.binomial(n=1, p=predictions)
    return {
        "calibrated": metrics.decile_table(labels, predictions),
        "industry": metrics.decile_table(labels, predictions * 5),
    }


@pytest.fixture
def data_sets(rng):
    return {
        "industry": pd.DataFrame({"credit_score": rng.lognormal(3.0, 1.0, 1000)}),
        "company": pd.DataFrame({"credit_score": rng.lognormal(3.5, 1.0, 200)}),
    }


@pytest.mark.parametrize("log_axes", [False, True])
def test_plot_decile_calibration_does_not_raise_errors_with_valid_inputs(
    decile_tables, log_axes
):
    try:
        fig = plotting.plot_decile_calibration(
            decile_tables, title="Calibration", log_axes=log_axes
        )
    except Exception:
        raise AssertionError(
            "The function plot_decile_calibration from plotting.py failed to generate a plot."
        )
    assert isinstance(fig, go.Figure)
    assert [trace.name for trace in fig.data] == ["calibrated", "industry"]
    assert len(fig.data[0].x) == 10


def test_plot_decile_calibration_marks_significant_deviations(decile_tables):
    fig = plotting.plot_decile_calibration(decile_tables)
    # Predictions are five times too high; the top decile has enough events to show it
    assert fig.data[1].marker.symbol[-1] == "x"


def test_plot_decile_calibration_matplotlib_does_not_raise_errors_with_valid_inputs(
    decile_tables,
):
    try:
        ax = plotting.plot_decile_calibration_matplotlib(decile_tables, title="Calibration")
    except Exception:
        raise AssertionError(
            "The function plot_decile_calibration_matplotlib from plotting.py failed to generate a plot."
        )
    assert isinstance(ax, plt.Axes)
    assert ax.get_title() == "Calibration"
    plt.close("all")


def test_plot_decile_calibration_matplotlib_draws_on_given_axes(decile_tables):
    _, ax = plt.subplots()
    assert plotting.plot_decile_calibration_matplotlib(decile_tables, ax=ax) is ax
    plt.close("all")


@pytest.mark.parametrize("log_x_axis", [False, True])
def test_plot_covariate_distributions_does_not_raise_errors_with_valid_inputs(
    data_sets, log_x_axis
):
    try:
        fig = plotting.plot_covariate_distributions(
            data_sets, num_bins=20, log_x_axis=log_x_axis
        )
    except Exception:
        raise AssertionError(
            "The function plot_covariate_distributions from plotting.py failed to generate a plot."
        )
    assert isinstance(fig, go.Figure)
    assert len(fig.data) == 2
    for trace in fig.data:
        assert len(trace.y) == 20
        assert np.sum(trace.y) == pytest.approx(1.0)
