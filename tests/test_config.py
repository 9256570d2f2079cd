import os
import subprocess
import sys

import pytest

from booking_auth import config


@pytest.mark.parametrize(
    ("raw", "minimum", "expected"),
    [(None, 1, 900), ("  120 ", 1, 120), ("0", 0, 0), ("4", 4, 4)],
)
def test_number_reads_values_at_or_above_minimum(monkeypatch, raw, minimum, expected):
    if raw is None:
        monkeypatch.delenv("BOOKING_TEST_NUMBER", raising=False)
    else:
        monkeypatch.setenv("BOOKING_TEST_NUMBER", raw)

    assert config._number("BOOKING_TEST_NUMBER", 900, minimum=minimum) == expected


@pytest.mark.parametrize(("raw", "minimum"), [("-60", 1), ("0", 1), ("-1", 0), ("3", 4)])
def test_number_rejects_values_below_minimum(monkeypatch, raw, minimum):
    monkeypatch.setenv("BOOKING_TEST_NUMBER", raw)

    with pytest.raises(RuntimeError, match="BOOKING_TEST_NUMBER must be at least"):
        config._number("BOOKING_TEST_NUMBER", 900, minimum=minimum)


def test_number_rejects_non_integers(monkeypatch):
    monkeypatch.setenv("BOOKING_TEST_NUMBER", "15m")

    with pytest.raises(RuntimeError, match="must be an integer"):
        config._number("BOOKING_TEST_NUMBER", 900)


@pytest.mark.parametrize("raw", ["0", "5,-1", "soon"])
def test_lockout_ladder_must_be_positive_integers(monkeypatch, raw):
    monkeypatch.setenv("LOCKOUT_DURATIONS_MINUTES", raw)

    with pytest.raises(RuntimeError, match="LOCKOUT_DURATIONS_MINUTES"):
        config._numbers("LOCKOUT_DURATIONS_MINUTES", "1,5,15,60")


@pytest.mark.parametrize(
    ("name", "raw"),
    [
        ("ACCESS_TOKEN_TTL", "-60"),
        ("REFRESH_IDLE_TTL", "0"),
        ("MAX_FAILED_LOGIN_ATTEMPTS", "0"),
        ("BCRYPT_ROUNDS", "2"),
        ("ACCESS_TOKEN_LEEWAY", "-5"),
    ],
)
def test_import_fails_on_out_of_range_setting(name, raw):
    env = {**os.environ, name: raw}

    result = subprocess.run(
        [sys.executable, "-c", "import booking_auth.config"],
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )

    assert result.returncode != 0
    assert f"{name} must be at least" in result.stderr
