# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict


from typing import Tuple

import numpy as np
import pandas as pd

from matplotlib import pyplot as plt
from plotly import graph_objects as go
from plotly.subplots import make_subplots
from recalibration.simulation import COVARIATE_COLUMN_NAME

MODEL_COLORS: dict[str, str] = {
    "calibrated": "blue",
    "industry": "red",
}


def _significant_deviation(table: pd.DataFrame) -> pd.Series:
    # Bins whose mean prediction lies outside the confidence interval of the actual rate
    return (table.predicted < table.lower) | (table.predicted > table.upper)


def plot_decile_calibration(
    decile_tables: dict[str, pd.DataFrame],
    title: str = "",
    log_axes: bool = False,
) -> go.Figure:
    """
    Plots actual vs predicted default rate per decile for one or more models, with Clopper-Pearson error bars
    on the actual rate and the diagonal of perfect calibration.

    :param decile_tables: decile table (see `metrics.decile_table`) per model name
    :param title: title of the figure
    :param log_axes: whether to use logarithmic axes, useful when rates span several orders of magnitude
    :return: plotly figure
    """
    fig = go.Figure()
    upper_bound = 0.0
    for model_name, table in decile_tables.items():
        color = MODEL_COLORS.get(model_name)
        fig.add_trace(
            go.Scatter(
                x=table.predicted,
                y=table.actual,
                mode="markers+lines",
                name=model_name,
                text=[f"decile {d}, n={n}" for d, n in zip(table.decile, table.n)],
                marker={
                    "color": color,
                    "symbol": [
                        "x" if sig else "circle"
                        for sig in _significant_deviation(table)
                    ],
                },
                error_y={
                    "type": "data",
                    "symmetric": False,
                    "array": table.upper - table.actual,
                    "arrayminus": table.actual - table.lower,
                    "color": color,
                },
            )
        )
        upper_bound = max(upper_bound, table.predicted.max(), table.upper.max())

    fig.add_shape(
        type="line",
        x0=0,
        y0=0,
        x1=upper_bound,
        y1=upper_bound,
        line={
            "color": "Grey",
            "width": 2,
            "dash": "dash",
        },
    )

    fig.update_layout(title=title, template="plotly_white")
    axis_type = "log" if log_axes else "linear"
    fig.update_xaxes(title_text="Mean predicted default rate", type=axis_type)
    fig.update_yaxes(title_text="Actual default rate", type=axis_type)
    return fig


def plot_decile_calibration_matplotlib(
    decile_tables: dict[str, pd.DataFrame],
    ax: plt.Axes | None = None,
    title: str = "",
    figsize: Tuple[int, int] = (8, 6),
) -> plt.Axes:
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)
    upper_bound = 0.0
    for model_name, table in decile_tables.items():
        ax.errorbar(
            table.predicted,
            table.actual,
            yerr=[table.actual - table.lower, table.upper - table.actual],
            fmt="o-",
            markersize=4,
            linewidth=1,
            color=MODEL_COLORS.get(model_name),
            label=model_name,
        )
        upper_bound = max(upper_bound, table.predicted.max(), table.upper.max())
    # Plot the line that represents perfect calibration
    ax.plot([0, upper_bound], [0, upper_bound], "grey", lw=2, linestyle="--")
    ax.set_xlabel("Mean predicted default rate")
    ax.set_ylabel("Actual default rate")
    ax.set_title(title)
    ax.legend(fontsize="small", loc="upper left")
    return ax


def plot_covariate_distributions(
    data_sets: dict[str, pd.DataFrame],
    column: str = COVARIATE_COLUMN_NAME,
    num_bins: int = 50,
    log_x_axis: bool = True,
) -> go.Figure:
    """
    Plots the normalized distribution of a covariate for several data sets side by side.

    :param data_sets: dataframe per data set name
    :param column: the covariate to plot
    :param num_bins: number of histogram bins, shared across data sets
    :param log_x_axis: whether the bins are equispaced on the log scale
    :return: plotly figure with one subplot per data set
    """
    values = pd.concat([df[column] for df in data_sets.values()])
    if log_x_axis:
        bin_edges = np.logspace(
            np.log10(values.min()), np.log10(values.max()), num_bins + 1
        )
        # Round trip through log10 can move the outer edges inside the data range
        bin_edges[[0, -1]] = values.min(), values.max()
    else:
        bin_edges = np.linspace(values.min(), values.max(), num_bins + 1)

    fig = make_subplots(
        rows=1,
        cols=len(data_sets),
        shared_yaxes=True,
        subplot_titles=list(data_sets),
    )
    for i, (name, df) in enumerate(data_sets.items()):
        counts, _ = np.histogram(df[column], bins=bin_edges)
        counts = counts / np.sum(counts)
        fig.add_trace(
            go.Bar(
                x=0.5 * (bin_edges[1:] + bin_edges[:-1]),
                y=counts,
                width=np.diff(bin_edges),
                opacity=0.6,
                marker_color="lightblue",
                name=name,
            ),
            row=1,
            col=i + 1,
        )
        fig.update_xaxes(
            title_text=column, type="log" if log_x_axis else "linear", row=1, col=i + 1
        )

    fig.update_layout(showlegend=False, template="plotly_white")
    fig.update_yaxes(title_text="Share of observations", row=1, col=1)
    return fig
