# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict


class RecalibrationError(ValueError):
    """
    Base class for all fatal errors raised while running a recalibration experiment.

    :param message: description of the failure
    :param stage: name of the pipeline stage in which the failure happened. The experiment runner fills this in
        when the error is raised without one.
    """

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage is None:
            return message
        return f"[{self.stage}] {message}"


class ConfigurationError(RecalibrationError):
    """Invalid experiment or simulation parameters, detected before any simulation runs."""


class ConvergenceError(RecalibrationError):
    """A logistic regression fit did not converge to finite coefficients."""


class DegenerateSplitError(RecalibrationError):
    """A training partition contains no events or no non-events, so no model can be fit on it."""
