import pytest

from mpc_path_tracker import cli

VALID_ARGS = ["10", "0.1", "0.0", "100", "100", "1", "1", "1", "1", "10", "false"]


@pytest.fixture
def no_simulation(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "run_simulation", lambda *args, **kwargs: calls.append(args))
    return calls


def test_too_few_args_exits_before_control(no_simulation, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(VALID_ARGS[:5])
    assert excinfo.value.code != 0
    assert no_simulation == []
    assert "usage" in capsys.readouterr().err


def test_invalid_debug_flag_exits(no_simulation, capsys):
    args = VALID_ARGS[:-1] + ["yes"]
    with pytest.raises(SystemExit) as excinfo:
        cli.main(args)
    assert excinfo.value.code != 0
    assert no_simulation == []
    assert "debug must be 'true' or 'false'" in capsys.readouterr().err


def test_invalid_horizon_exits(no_simulation):
    args = ["0"] + VALID_ARGS[1:]
    with pytest.raises(SystemExit) as excinfo:
        cli.main(args)
    assert excinfo.value.code != 0
    assert no_simulation == []


def test_parse_args_builds_params():
    args, params, config = cli.parse_args(VALID_ARGS + ["--steps", "20", "--radius", "2.5"])
    assert params.steps_ahead == 10
    assert params.weights.cte == 100.0
    assert args.steps == 20
    assert args.radius == 2.5
    assert config.solver_backend == "ipopt"


def test_short_simulation_writes_csv(tmp_path):
    csv_path = tmp_path / "run.csv"
    assert cli.main(VALID_ARGS + ["--steps", "5", "--csv", str(csv_path)]) == 0
    lines = csv_path.read_text().splitlines()
    assert lines[0].startswith("step,t,x,y")
    assert len(lines) == 6


def test_mistyped_config_exits_with_usage(no_simulation, tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("lf: abc\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        cli.main(VALID_ARGS + ["--config", str(path)])
    assert excinfo.value.code != 0
    assert no_simulation == []
    assert "lf must be of type float" in capsys.readouterr().err
