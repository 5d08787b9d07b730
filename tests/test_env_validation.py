import os

import pytest

from env_validation import EnvironmentError, get_env_bool, get_env_int, validate_environment

_MANAGED = ("DB_PATH", "LOG_LEVEL", "PRUNE_AFTER_DAYS", "MAX_ACTIVE_RECOMMENDATIONS", "DEFAULT_TEACHER_ID")


@pytest.fixture(autouse=True)
def blank_environment(monkeypatch):
    # Empty values count as unset and are restored by monkeypatch afterwards
    for var in _MANAGED:
        monkeypatch.setenv(var, "")


def test_defaults_are_applied():
    validate_environment()
    assert os.environ["PRUNE_AFTER_DAYS"] == "30"
    assert os.environ["MAX_ACTIVE_RECOMMENDATIONS"] == "5"
    assert os.environ["DEFAULT_TEACHER_ID"] == "educator"


@pytest.mark.parametrize(
    "var, value",
    [("PRUNE_AFTER_DAYS", "soon"), ("MAX_ACTIVE_RECOMMENDATIONS", "0"), ("LOG_LEVEL", "LOUD")],
)
def test_invalid_values_raise(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("SOME_INT", "12")
    monkeypatch.setenv("BAD_INT", "twelve")
    monkeypatch.setenv("SOME_FLAG", "yes")
    monkeypatch.delenv("UNSET_INT", raising=False)
    monkeypatch.delenv("UNSET_FLAG", raising=False)
    assert get_env_int("SOME_INT", 1) == 12
    assert get_env_int("BAD_INT", 1) == 1
    assert get_env_int("UNSET_INT", 7) == 7
    assert get_env_bool("SOME_FLAG")
    assert not get_env_bool("UNSET_FLAG")
