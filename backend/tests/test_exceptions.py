import pytest

from sia.core.exceptions import (
    AppError,
    AssignmentNotFound,
    ConfigUnavailable,
    InvalidConfig,
    NoActiveProposal,
    PersistError,
    RemoteError,
    RunAlreadyActive,
)


def test_invalid_config_structure():
    err = InvalidConfig(message="Test error", details={"foo": "bar"})
    assert err.status_code == 400
    assert err.message == "Test error"
    assert err.details == {"foo": "bar"}
    assert isinstance(err, AppError)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (AssignmentNotFound(7), 404),
        (RunAlreadyActive("abc"), 409),
        (NoActiveProposal(), 409),
        (RemoteError("timeout"), 502),
        (PersistError("write rejected"), 502),
        (ConfigUnavailable("offline"), 503),
    ],
)
def test_error_status_codes(error, status_code):
    assert error.status_code == status_code
    assert str(error) == error.message


def test_run_already_active_carries_run_id():
    assert RunAlreadyActive("abc").details == {"run_id": "abc"}
