import pytest

from booking_auth.main import _environment_problems

_GOOD_ENV = {
    "DATABASE_URL": "sqlite:///booking.db",
    "ALLOWED_ORIGINS": "https://hotel.example",
    "SMTP_HOST": "smtp.hotel.example",
    "TOKEN_PEPPER": "pepper",
    "SECRET_KEY": "s" * 40,
}


@pytest.fixture
def environment(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    for name, value in _GOOD_ENV.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_complete_environment_passes(environment):
    assert _environment_problems() == []


def test_missing_variables_are_listed_together(environment):
    environment.delenv("SMTP_HOST")
    environment.setenv("TOKEN_PEPPER", "   ")
    environment.delenv("SECRET_KEY")

    (problem,) = _environment_problems()

    assert problem.startswith("Missing required environment variables:")
    for name in ("SMTP_HOST", "TOKEN_PEPPER", "SECRET_KEY"):
        assert name in problem


def test_short_secret_and_empty_origin_list_are_reported(environment):
    environment.setenv("SECRET_KEY", "short")
    environment.setenv("ALLOWED_ORIGINS", " , ")

    assert _environment_problems() == [
        "SECRET_KEY must be at least 32 characters long",
        "ALLOWED_ORIGINS must contain at least one comma-separated origin",
    ]


def test_jwt_secret_takes_precedence(environment):
    environment.setenv("SECRET_KEY", "short")
    environment.setenv("JWT_SECRET", "j" * 48)

    assert _environment_problems() == []
