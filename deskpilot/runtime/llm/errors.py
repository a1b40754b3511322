from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Any

import anthropic
import httpx
import openai

from ..error_codes import ErrorCode

LLMErrorCode = ErrorCode

CREDENTIALS_HINT = "Configure the provider API key in settings.json."


class CancellationToken:
    """
    Run-wide abort flag.

    Thread-safe so a UI thread can cancel a run executing on the event loop. Checked at step
    boundaries and during waits; in-flight tool bodies are not interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`. Returns False if cancelled before the time elapsed."""

        deadline = time.monotonic() + max(0.0, seconds)
        while not self.cancelled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            await asyncio.sleep(min(remaining, 0.05))
        return False


class LLMRequestError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: LLMErrorCode,
        provider_name: str | None = None,
        profile_id: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider_name = provider_name
        self.profile_id = profile_id
        self.model = model
        self.status_code = status_code
        self.request_id = request_id
        self.retryable = retryable
        self.details = details
        self.__cause__ = cause


def is_retryable_error_code(code: LLMErrorCode) -> bool:
    return code in {
        LLMErrorCode.TIMEOUT,
        LLMErrorCode.RATE_LIMIT,
        LLMErrorCode.SERVER_ERROR,
        LLMErrorCode.NETWORK_ERROR,
    }


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, LLMRequestError) and exc.retryable is not None:
        return exc.retryable
    return is_retryable_error_code(classify_provider_exception(exc))


def is_credentials_error(exc: BaseException) -> bool:
    message = str(exc)
    return "API key" in message or "credentials" in message


def user_facing_error_message(exc: BaseException) -> str:
    message = str(exc) or exc.__class__.__name__
    if is_credentials_error(exc):
        return f"{message}. {CREDENTIALS_HINT}"
    return message


def classify_provider_exception(exc: BaseException) -> LLMErrorCode:
    if isinstance(exc, LLMRequestError):
        return exc.code

    if isinstance(exc, TimeoutError):
        return LLMErrorCode.TIMEOUT

    if isinstance(exc, openai.APITimeoutError):
        return LLMErrorCode.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return LLMErrorCode.NETWORK_ERROR
    if isinstance(exc, openai.RateLimitError):
        return LLMErrorCode.RATE_LIMIT
    if isinstance(exc, openai.AuthenticationError):
        return LLMErrorCode.AUTH
    if isinstance(exc, openai.PermissionDeniedError):
        return LLMErrorCode.PERMISSION
    if isinstance(exc, openai.NotFoundError):
        return LLMErrorCode.NOT_FOUND
    if isinstance(exc, openai.ConflictError):
        return LLMErrorCode.CONFLICT
    if isinstance(exc, openai.UnprocessableEntityError):
        return LLMErrorCode.UNPROCESSABLE
    if isinstance(exc, openai.BadRequestError):
        return LLMErrorCode.BAD_REQUEST
    if isinstance(exc, openai.InternalServerError):
        return LLMErrorCode.SERVER_ERROR
    if isinstance(exc, openai.APIResponseValidationError):
        return LLMErrorCode.RESPONSE_VALIDATION

    if isinstance(exc, anthropic.APITimeoutError):
        return LLMErrorCode.TIMEOUT
    if isinstance(exc, anthropic.APIConnectionError):
        return LLMErrorCode.NETWORK_ERROR
    if isinstance(exc, anthropic.RateLimitError):
        return LLMErrorCode.RATE_LIMIT
    if isinstance(exc, anthropic.AuthenticationError):
        return LLMErrorCode.AUTH
    if isinstance(exc, anthropic.PermissionDeniedError):
        return LLMErrorCode.PERMISSION
    if isinstance(exc, anthropic.NotFoundError):
        return LLMErrorCode.NOT_FOUND
    if isinstance(exc, anthropic.ConflictError):
        return LLMErrorCode.CONFLICT
    if isinstance(exc, anthropic.UnprocessableEntityError):
        return LLMErrorCode.UNPROCESSABLE
    if isinstance(exc, anthropic.BadRequestError):
        return LLMErrorCode.BAD_REQUEST
    if isinstance(exc, anthropic.InternalServerError):
        return LLMErrorCode.SERVER_ERROR
    if isinstance(exc, anthropic.APIResponseValidationError):
        return LLMErrorCode.RESPONSE_VALIDATION

    if isinstance(exc, httpx.TimeoutException):
        return LLMErrorCode.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return LLMErrorCode.NETWORK_ERROR

    status_code = getattr(exc, "status_code", None)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
    if isinstance(status_code, int):
        if status_code == 400:
            return LLMErrorCode.BAD_REQUEST
        if status_code == 401:
            return LLMErrorCode.AUTH
        if status_code == 403:
            return LLMErrorCode.PERMISSION
        if status_code == 404:
            return LLMErrorCode.NOT_FOUND
        if status_code == 409:
            return LLMErrorCode.CONFLICT
        if status_code == 422:
            return LLMErrorCode.UNPROCESSABLE
        if status_code == 429:
            return LLMErrorCode.RATE_LIMIT
        if 500 <= status_code <= 599:
            return LLMErrorCode.SERVER_ERROR

    return LLMErrorCode.UNKNOWN


def wrap_provider_exception(
    exc: BaseException,
    *,
    provider_name: str,
    profile_id: str | None,
    model: str | None,
    operation: str,
) -> LLMRequestError:
    if isinstance(exc, LLMRequestError):
        return exc
    code = classify_provider_exception(exc)
    status_code = getattr(exc, "status_code", None)
    request_id = getattr(exc, "request_id", None)
    message = str(exc) or exc.__class__.__name__
    extra = _provider_error_detail(exc)
    if extra and extra not in message:
        message = f"{message}: {extra}"
    return LLMRequestError(
        message,
        code=code,
        provider_name=provider_name,
        profile_id=profile_id,
        model=model,
        status_code=status_code if isinstance(status_code, int) else None,
        request_id=request_id if isinstance(request_id, str) else None,
        retryable=is_retryable_error_code(code),
        details={"operation": operation},
        cause=exc,
    )


def _provider_error_detail(exc: BaseException) -> str | None:
    # OpenAI SDK HTTP errors often include a structured body with the real error message.
    if isinstance(exc, openai.OpenAIError):
        body = getattr(exc, "body", None)
        if isinstance(body, dict):
            err = body.get("error", body)
            if isinstance(err, dict):
                msg = err.get("message")
                meta = [
                    f"{key}={err[key].strip()}"
                    for key in ("type", "param", "code")
                    if isinstance(err.get(key), str) and err[key].strip()
                ]
                parts: list[str] = []
                if isinstance(msg, str) and msg.strip():
                    parts.append(msg.strip())
                if meta:
                    parts.append("(" + ", ".join(meta) + ")")
                if parts:
                    return " ".join(parts)
            return _truncate(_safe_json_dumps(body), 2000)
        if isinstance(body, str) and body.strip():
            return _truncate(body.strip(), 2000)
        return None

    if isinstance(exc, anthropic.AnthropicError):
        body = getattr(exc, "body", None)
        if isinstance(body, dict):
            msg = body.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
            return _truncate(_safe_json_dumps(body), 2000)
        if isinstance(body, str) and body.strip():
            return _truncate(body.strip(), 2000)
        return None

    return None


def _safe_json_dumps(obj: Any) -> str:
    try:
        return json.dumps(obj, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        return repr(obj)


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 1)] + "…"
