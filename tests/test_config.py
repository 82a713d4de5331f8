# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import math

import pytest

from recalibration.config import (
    COMPANY,
    DEFAULT_CONFIG,
    ExperimentConfig,
    INDUSTRY,
    SimulationConfig,
)
from recalibration.exceptions import ConfigurationError


def test_default_config_matches_reference_experiment() -> None:
    assert DEFAULT_CONFIG.to_dict() == {
        "seed": 1,
        "industry_n": 1_000_000,
        "industry_meanlog": 3.0,
        "industry_sdlog": 1.0,
        "industry_intercept": 12.0,
        "industry_slope": -2.0,
        "company_n": 10_000,
        "company_meanlog": 3.5,
        "company_sdlog": 1.0,
        "company_intercept": 1.5,
        "company_slope": -0.9,
        "train_ratio": 0.1,
    }


def test_default_config_is_valid() -> None:
    DEFAULT_CONFIG.validate()


def test_from_dict_is_inverse_of_to_dict() -> None:
    config = ExperimentConfig.from_dict(DEFAULT_CONFIG.to_dict())
    assert config == DEFAULT_CONFIG
    assert config.industry == INDUSTRY
    assert config.company == COMPANY


def test_from_dict_falls_back_to_defaults_for_missing_keys() -> None:
    config = ExperimentConfig.from_dict({"company_n": 500, "seed": 3})
    assert config.company.n == 500
    assert config.seed == 3
    assert config.industry == INDUSTRY
    assert config.train_ratio == 0.1


def test_replace_overrides_only_given_keys() -> None:
    config = DEFAULT_CONFIG.replace(industry_n=1000, train_ratio=0.5)
    assert config.industry.n == 1000
    assert config.industry.slope == INDUSTRY.slope
    assert config.train_ratio == 0.5
    assert config.company == COMPANY


def test_from_dict_rejects_unknown_keys() -> None:
    with pytest.raises(ConfigurationError, match="industry_size"):
        ExperimentConfig.from_dict({"industry_size": 10})


@pytest.mark.parametrize(
    "overrides",
    [
        {"industry_n": 0},
        {"company_n": -10},
        {"company_n": 10.5},
        {"company_n": True},
        {"industry_sdlog": 0.0},
        {"company_sdlog": -1.0},
        {"industry_meanlog": math.nan},
        {"company_slope": math.inf},
        {"company_intercept": "1.5"},
        {"train_ratio": 0.0},
        {"train_ratio": 1.0},
        {"train_ratio": 1.5},
        {"seed": -1},
        {"seed": 1.5},
    ],
)
def test_validate_raises_configuration_error(overrides: dict[str, object]) -> None:
    config = ExperimentConfig.from_dict(overrides)
    with pytest.raises(ConfigurationError):
        config.validate()


def test_configuration_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        SimulationConfig(
            name="company", n=0, meanlog=0.0, sdlog=1.0, intercept=0.0, slope=0.0
        ).validate()


def test_configuration_error_names_the_parameter() -> None:
    config = DEFAULT_CONFIG.replace(company_sdlog=0.0)
    with pytest.raises(ConfigurationError, match="company_sdlog"):
        config.validate()
