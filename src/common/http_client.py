"""Shared HTTP helpers used by the registry clients.

Registry modules call ``robust_get``/``get_json`` instead of ``requests``
directly. Transport failures come back as status code 0 rather than being
raised, so a failing package source never aborts a run.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, str], str]


def _trace(message: str, target: str, **fields: Any) -> None:
    if is_debug_enabled(logger):
        logger.debug(message, extra=extra_context(component="http_client", action="GET", target=target, **fields))


def _backoff(attempt: int) -> None:
    """Sleep before retry number ``attempt`` (1-based), doubling each time."""
    time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 1)))


def robust_get(url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> Response:
    """GET ``url`` with the shared timeout, retrying 5xx and transport errors.

    Extra keyword arguments (``auth`` for private feeds) go to ``requests.get``.

    Returns:
        (status_code, headers, body_text); status_code is 0 when every one of
        ``Constants.HTTP_RETRY_MAX`` attempts failed without a usable response.
    """
    target = safe_url(url)
    failure = "no attempt made"

    for attempt in range(Constants.HTTP_RETRY_MAX):
        if attempt:
            _backoff(attempt)
        _trace("HTTP request", target, event="http_request", count=attempt + 1)
        with Timer() as t:
            try:
                response = requests.get(url, timeout=Constants.REQUEST_TIMEOUT, headers=headers, **kwargs)
            except requests.Timeout:
                failure = "timeout"
                _trace("HTTP timeout", target, event="http_exception", outcome="timeout")
                continue
            except requests.RequestException as exc:
                failure = str(exc)
                _trace("HTTP request exception", target, event="http_exception", outcome="request_exception")
                continue

        _trace("HTTP response", target, event="http_response",
               status_code=response.status_code, duration_ms=t.duration_ms())
        if response.status_code < 500:
            return response.status_code, dict(response.headers), response.text
        failure = f"server error {response.status_code}"

    logger.warning("GET %s failed after %d attempts: %s", target, Constants.HTTP_RETRY_MAX, failure)
    return 0, {}, f"Request failed after {Constants.HTTP_RETRY_MAX} attempts: {failure}"


def get_json(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """``robust_get`` plus JSON decoding.

    The parsed body is returned only for a 200 response with valid JSON;
    otherwise the third element is None.
    """
    status_code, response_headers, text = robust_get(url, headers=headers, **kwargs)
    if status_code != 200 or not text:
        return status_code, response_headers, None
    try:
        return status_code, response_headers, json.loads(text)
    except json.JSONDecodeError:
        if is_debug_enabled(logger):
            logger.debug("JSON decode error", extra=extra_context(
                event="parse", component="http_client", action="get_json",
                outcome="json_decode_error", status_code=status_code, target=safe_url(url)
            ))
        return status_code, response_headers, None
