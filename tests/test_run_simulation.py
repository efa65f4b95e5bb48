"""Smoke tests for the command-line entry point."""

import json
import os

import pytest

import run_simulation


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("ACD_SIM_"):
            monkeypatch.delenv(name)


def test_json_output(capsys):
    summary = run_simulation.main(["--days", "5", "--borrowers", "2", "--seed", "3", "--json"])
    printed = json.loads(capsys.readouterr().out)

    assert printed["n_steps"] == 5 * 6
    assert summary["n_steps"] == printed["n_steps"]
    assert printed["loans_taken"] == summary["loans_taken"]
    assert "total_acd" in printed["final"]
    assert set(printed["pools"]) >= {"collateral_held", "open_loans_acd", "interest_earned_pool"}


def test_text_output(capsys):
    run_simulation.main(["--days", "2", "--borrowers", "1", "--steps-per-day", "4"])
    out = capsys.readouterr().out
    assert "ACD ECONOMY SIMULATION" in out
    assert "(8 ticks, 4/day)" in out
    assert "Collateral Held" in out


def test_flags_layer_over_config():
    parser_args = run_simulation.argparse.Namespace(
        days=3, borrowers=4, seed=9, steps_per_day=24,
        interest_rate=0.3, eth_vol=0.5,
    )
    params = run_simulation.build_params(parser_args)
    assert params["sim_config"].n_days == 3
    assert params["sim_config"].n_borrowers == 4
    assert params["sim_config"].time_step_seconds == 3600
    assert params["market"].market_loan_interest_rate == pytest.approx(0.3)
    assert params["exchange"].eth_annual_vol == pytest.approx(0.5)


def test_env_defaults_apply(monkeypatch, capsys):
    monkeypatch.setenv("ACD_SIM_N_DAYS", "1")
    summary = run_simulation.main(["--borrowers", "1", "--json"])
    capsys.readouterr()
    assert summary["n_steps"] == 6


def test_bad_steps_per_day():
    with pytest.raises(ValueError):
        run_simulation.main(["--days", "1", "--steps-per-day", "7"])
