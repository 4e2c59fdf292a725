import logging
import pathlib

import pytest
import yaml

from mpc_path_tracker import params as params_module
from mpc_path_tracker.params import (POSITIONAL_FIELDS, ConfigError, TrackerConfig,
                                     load_config, parse_params)

CONFIG_PATH = pathlib.Path(__file__).resolve().parent.parent / "config" / "mpc_tracker.yaml"

VALID_ARGS = ["10", "0.1", "0.1", "1", "1", "1", "1", "1", "1", "1", "false"]


@pytest.fixture(scope="module")
def config():
    with open(CONFIG_PATH, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def test_top_level_keys(config):
    for key in [
        "lf",
        "steering_center_offset",
        "ref_v",
        "steer_limit",
        "accel_limit",
        "num_steps_back",
        "num_steps_poly",
        "step_poly",
        "poly_degree",
        "x_delta_min",
        "loop_rate_hz",
        "solver_backend",
    ]:
        assert key in config, f"Missing key: {key}"


def test_window_bounds(config):
    assert config["num_steps_poly"] > config["poly_degree"], "window must hold a full fit"
    assert config["step_poly"] >= 1
    assert config["x_delta_min"] > 0.0


def test_yaml_matches_defaults(config):
    assert load_config(CONFIG_PATH) == TrackerConfig()
    assert config["solver_backend"] in ("ipopt", "osqp", "cvxpy")


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("lf: 0.3\nwheel_count: 4\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="wheel_count"):
        load_config(path)


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_overrides_validated():
    with pytest.raises(ConfigError, match="solver_backend"):
        load_config(CONFIG_PATH, overrides={"solver_backend": "snopt"})
    assert load_config(CONFIG_PATH, overrides={"solver_backend": "osqp"}).solver_backend == "osqp"


def test_parse_params_valid():
    params = parse_params(VALID_ARGS)
    assert params.steps_ahead == 10
    assert params.dt == pytest.approx(0.1)
    assert params.latency == pytest.approx(0.1)
    assert params.weights.consec_steer == pytest.approx(1.0)
    assert params.debug is False
    assert len(POSITIONAL_FIELDS) == 11


def test_parse_params_debug_true():
    args = list(VALID_ARGS)
    args[-1] = "true"
    assert parse_params(args).debug is True


@pytest.mark.parametrize("index, value, message", [
    (0, "0", "steps_ahead"),
    (0, "2.5", "steps_ahead"),
    (1, "0", "dt"),
    (2, "-0.1", "latency"),
    (3, "-1", "cte_coeff"),
    (9, "abc", "consec_steer_coeff"),
    (10, "True", "debug"),
    (10, "1", "debug"),
])
def test_parse_params_invalid(index, value, message):
    args = list(VALID_ARGS)
    args[index] = value
    with pytest.raises(ConfigError, match=message):
        parse_params(args)


def test_parse_params_wrong_count():
    with pytest.raises(ConfigError, match="Expected 11 values"):
        parse_params(VALID_ARGS[:-1])


def test_large_latency_warns(caplog):
    args = list(VALID_ARGS)
    args[2] = "1.5"
    with caplog.at_level(logging.WARNING, logger="mpc_path_tracker.params"):
        params = parse_params(args)
    assert params.latency == pytest.approx(1.5)
    assert "longer than one second" in caplog.text


@pytest.mark.parametrize("text, key", [
    ("lf: abc\n", "lf"),
    ("max_iter: 2.5\n", "max_iter"),
    ("publish_acceleration: 1\n", "publish_acceleration"),
    ("solver_backend: 3\n", "solver_backend"),
    ("max_telemetry_age: soon\n", "max_telemetry_age"),
])
def test_wrong_type_rejected(tmp_path, text, key):
    path = tmp_path / "typed.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match=key):
        load_config(path)


def test_integer_accepted_for_float_field(tmp_path):
    path = tmp_path / "ints.yaml"
    path.write_text("lf: 1\nmax_telemetry_age: 2\n", encoding="utf-8")
    config = load_config(path)
    assert config.lf == 1.0
    assert isinstance(config.lf, float)
    assert config.max_telemetry_age == 2.0


def test_absent_default_file_logged(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(params_module, "DEFAULT_CONFIG_PATH", tmp_path / "none.yaml")
    with caplog.at_level(logging.INFO, logger="mpc_path_tracker.params"):
        config = load_config()
    assert config == TrackerConfig()
    assert "using built-in defaults" in caplog.text
