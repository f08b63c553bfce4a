from __future__ import annotations

import pytest

from capbook.exceptions import RegistryNotFoundError, RegistryUnavailableError
from capbook.queueing.classifier import (
    FailureDecision,
    classify_failure,
    error_message,
    is_final_attempt,
)


def test_final_attempt_is_zero_based():
    assert not is_final_attempt(0, 3)
    assert not is_final_attempt(1, 3)
    assert is_final_attempt(2, 3)
    assert is_final_attempt(0, 1)


@pytest.mark.parametrize("attempt,expected", [(0, "RETRY"), (1, "RETRY"), (2, "EXHAUSTED")])
def test_transient_errors_retry_until_last_attempt(attempt, expected):
    err = RegistryUnavailableError("HTTP 503")
    assert classify_failure(err, attempt, 3) is FailureDecision(expected)


def test_unexpected_exceptions_are_transient():
    assert classify_failure(RuntimeError("boom"), 0, 3) is FailureDecision.RETRY
    assert classify_failure(RuntimeError("boom"), 2, 3) is FailureDecision.EXHAUSTED


@pytest.mark.parametrize("attempt", [0, 1, 2])
def test_not_found_is_definitive_on_any_attempt(attempt):
    err = RegistryNotFoundError("CNPJ not found in the registry")
    assert classify_failure(err, attempt, 3) is FailureDecision.DEFINITIVE


def test_error_message_falls_back_to_type_name():
    assert error_message(RegistryUnavailableError("timeout")) == "timeout"
    assert error_message(RuntimeError()) == "RuntimeError"
