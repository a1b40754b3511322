"""Tests for provider error classification and the cancellation token."""

from __future__ import annotations

import httpx
import openai
import pytest

from deskpilot.runtime.llm.errors import (
    CancellationToken,
    LLMErrorCode,
    LLMRequestError,
    classify_provider_exception,
    is_retryable_error,
    user_facing_error_message,
    wrap_provider_exception,
)

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=_REQUEST)


class TestClassifyProviderException:
    def test_openai_errors(self) -> None:
        assert classify_provider_exception(openai.APITimeoutError(request=_REQUEST)) is LLMErrorCode.TIMEOUT
        assert classify_provider_exception(openai.APIConnectionError(request=_REQUEST)) is LLMErrorCode.NETWORK_ERROR
        rate_limited = openai.RateLimitError("slow down", response=_response(429), body=None)
        assert classify_provider_exception(rate_limited) is LLMErrorCode.RATE_LIMIT
        denied = openai.AuthenticationError("bad key", response=_response(401), body=None)
        assert classify_provider_exception(denied) is LLMErrorCode.AUTH

    def test_httpx_errors(self) -> None:
        assert classify_provider_exception(httpx.ReadTimeout("t", request=_REQUEST)) is LLMErrorCode.TIMEOUT
        assert classify_provider_exception(httpx.ConnectError("c", request=_REQUEST)) is LLMErrorCode.NETWORK_ERROR
        status = httpx.HTTPStatusError("boom", request=_REQUEST, response=_response(503))
        assert classify_provider_exception(status) is LLMErrorCode.SERVER_ERROR

    def test_plain_exceptions(self) -> None:
        assert classify_provider_exception(TimeoutError()) is LLMErrorCode.TIMEOUT
        assert classify_provider_exception(ValueError("x")) is LLMErrorCode.UNKNOWN


class TestWrapProviderException:
    def test_wraps_with_context(self) -> None:
        cause = openai.RateLimitError("slow down", response=_response(429), body=None)

        wrapped = wrap_provider_exception(cause, provider_name="openai", profile_id="p", model="m", operation="stream")

        assert isinstance(wrapped, LLMRequestError)
        assert wrapped.code is LLMErrorCode.RATE_LIMIT
        assert wrapped.retryable is True
        assert wrapped.status_code == 429
        assert wrapped.details == {"operation": "stream"}
        assert wrapped.__cause__ is cause
        assert is_retryable_error(wrapped)

    def test_existing_request_error_is_returned_as_is(self) -> None:
        err = LLMRequestError("x", code=LLMErrorCode.AUTH, retryable=False)
        assert wrap_provider_exception(err, provider_name="p", profile_id=None, model=None, operation="stream") is err
        assert not is_retryable_error(err)


class TestUserFacingMessage:
    def test_credentials_hint(self) -> None:
        assert user_facing_error_message(RuntimeError("Missing API key")).startswith("Missing API key. ")

    def test_other_errors_unchanged(self) -> None:
        assert user_facing_error_message(RuntimeError("boom")) == "boom"


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_sleep_completes(self) -> None:
        assert await CancellationToken().sleep(0.01) is True

    @pytest.mark.asyncio
    async def test_sleep_stops_when_cancelled(self) -> None:
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        assert await token.sleep(5) is False
