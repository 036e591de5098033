"""
HTTP Request Executor

Issues one HTTP request per attempt over httpx.AsyncClient, retrying
transient failures with exponential backoff and normalizing responses and
errors into engine types.
"""

import asyncio
import base64
import json
import logging
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from apiflow.errors import (
    DnsError,
    ExecutionError,
    InvalidBodyError,
    InvalidHeadersError,
    InvalidMethodError,
    InvalidUrlError,
    NetworkError,
    RequestTimeoutError,
    SslError,
)
from apiflow.flow_engine.url_validator import UrlPolicy, sanitize_for_logging

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRIES = 3
MAX_BACKOFF_MS = 10000
DEFAULT_USER_AGENT = 'apiflow-mcp-client/1.0.0'

ALLOWED_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS')

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'

DNS_MARKERS = (
    'name or service not known',
    'nodename nor servname',
    'getaddrinfo failed',
    'temporary failure in name resolution',
    'no address associated',
    'name resolution',
    'enotfound',
)
REFUSED_MARKERS = ('connection refused', 'econnrefused', 'errno 111', 'actively refused')
SSL_MARKERS = ('ssl', 'certificate', 'tls')


@dataclass
class HttpRequestConfig:
    """A request as described by a flow node or a direct caller. Timeout in ms."""
    method: str
    url: str
    headers: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[int] = None
    follow_redirects: bool = True


@dataclass
class MultipartPayload:
    """Pre-built multipart/form-data body, sent as is."""
    fields: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HttpResponse:
    """Normalized response. response_time is in ms, timestamp is ISO 8601."""
    status: int
    status_text: str
    headers: Dict[str, str]
    body: Any
    response_time: int
    timestamp: str
    url: str
    final_url: str
    redirected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body = self.body
        body_encoding = None
        if isinstance(body, (bytes, bytearray)):
            body = base64.b64encode(bytes(body)).decode('ascii')
            body_encoding = 'base64'

        data = {
            'status': self.status,
            'status_text': self.status_text,
            'headers': self.headers,
            'body': body,
            'response_time': self.response_time,
            'timestamp': self.timestamp,
            'url': self.url,
            'final_url': self.final_url,
            'redirected': self.redirected,
        }
        if body_encoding:
            data['body_encoding'] = body_encoding
        return data


class HttpRequestExecutor:
    """
    Sends HTTP requests with per-attempt timeout and retry/backoff.

    A new AsyncClient is opened per attempt, so one executor can be shared
    by flow runs living on different event loops.

    Args:
        transport: Optional httpx transport (httpx.MockTransport in tests)
        default_timeout: Per-attempt timeout in ms when the request sets none
        default_retries: Extra attempts used when execute_with_retry gets None
        user_agent: User-Agent sent unless the request sets one
        url_policy: Destination rules checked before sending
        sleep: Coroutine used for backoff waits
        logger: Logger to report through
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_timeout: int = DEFAULT_TIMEOUT_MS,
        default_retries: int = DEFAULT_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        url_policy: Optional[UrlPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.transport = transport
        self.default_timeout = default_timeout
        self.default_retries = default_retries
        self.user_agent = user_agent
        self.url_policy = url_policy or UrlPolicy()
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def execute(self, config: HttpRequestConfig) -> HttpResponse:
        """Send the request once, without retries."""
        return await self.execute_with_retry(config, 0)

    async def execute_with_retry(self, config: HttpRequestConfig, retries: Optional[int] = None) -> HttpResponse:
        """
        Send the request, retrying retryable failures.

        Args:
            config: The request to send
            retries: Additional attempts after the first (defaults to 3)

        Returns:
            HttpResponse of the first successful attempt

        Raises:
            ExecutionError: The error of the last attempt, or the first
                non-retryable one (DNS, refused connection, SSL, invalid input)
        """
        if retries is None:
            retries = self.default_retries

        method, headers, body_kwargs = self._prepare_request(config)
        safe_url = sanitize_for_logging(config.url)
        attempt = 0

        while True:
            try:
                response = await self._send(config, method, headers, body_kwargs)
                self.logger.info(
                    f"{method} {safe_url} -> {response.status} in {response.response_time}ms"
                    f" (attempt {attempt + 1})"
                )
                return response
            except ExecutionError as e:
                if not e.retryable or attempt >= retries:
                    self.logger.error(f"{method} {safe_url} failed after {attempt + 1} attempt(s): {e.message}")
                    raise

                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    f"{method} {safe_url} attempt {attempt + 1} failed ({e.code.value}), retrying in {delay}ms"
                )
                await self.sleep(delay / 1000)
                attempt += 1

    @staticmethod
    def backoff_delay(attempt: int) -> int:
        """Backoff in ms before the retry following attempt number `attempt` (0-based)."""
        return min(2 ** attempt * 1000, MAX_BACKOFF_MS)

    def _prepare_request(self, config: HttpRequestConfig):
        method = config.method.upper() if isinstance(config.method, str) else None
        if method not in ALLOWED_METHODS:
            raise InvalidMethodError(
                f"Invalid HTTP method: {config.method}",
                details={'allowed': list(ALLOWED_METHODS)},
            )

        validation = self.url_policy.validate(config.url)
        if not validation['is_valid']:
            raise InvalidUrlError(
                f"Invalid URL: {'; '.join(validation['errors'])}",
                details={'url': sanitize_for_logging(config.url), 'errors': validation['errors']},
            )

        headers = self._normalize_headers(config.headers)
        if not self._has_header(headers, 'user-agent'):
            headers['User-Agent'] = self.user_agent

        body_kwargs = self._normalize_body(config.body, headers)
        return method, headers, body_kwargs

    def _normalize_headers(self, headers: Any) -> Dict[str, str]:
        if headers is None:
            return {}
        if not isinstance(headers, dict):
            raise InvalidHeadersError('Headers must be a mapping of names to values')

        normalized = {}
        for name, value in headers.items():
            if not isinstance(name, str) or not name.strip():
                raise InvalidHeadersError(f"Invalid header name: {name!r}")
            if value is None:
                continue
            if isinstance(value, (dict, list, tuple, set)):
                raise InvalidHeadersError(f"Invalid value for header '{name}'")
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            normalized[name] = str(value)
        return normalized

    def _normalize_body(self, body: Any, headers: Dict[str, str]) -> Dict[str, Any]:
        if body is None:
            return {}

        if isinstance(body, MultipartPayload):
            # httpx writes the multipart Content-Type with its boundary
            return {'data': body.fields, 'files': body.files or None}

        if not self._has_header(headers, 'content-type'):
            headers['Content-Type'] = 'application/json'

        if isinstance(body, (bytes, bytearray)):
            return {'content': bytes(body)}

        if isinstance(body, str):
            return {'content': body.encode('utf-8')}

        content_type = self._get_header(headers, 'content-type').lower()
        try:
            if FORM_CONTENT_TYPE in content_type and isinstance(body, dict):
                return {'content': urlencode(body, doseq=True).encode('utf-8')}
            return {'content': json.dumps(body).encode('utf-8')}
        except (TypeError, ValueError) as e:
            raise InvalidBodyError(f"Request body could not be serialized: {e}", cause=e) from e

    async def _send(self, config: HttpRequestConfig, method: str, headers: Dict[str, str],
                    body_kwargs: Dict[str, Any]) -> HttpResponse:
        timeout_ms = config.timeout or self.default_timeout
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=timeout_ms / 1000,
                follow_redirects=config.follow_redirects,
            ) as client:
                response = await asyncio.wait_for(
                    client.request(method, config.url, headers=headers, **body_kwargs),
                    timeout=timeout_ms / 1000,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            elapsed = self._elapsed_ms(start)
            raise RequestTimeoutError(
                f"Request timeout after {elapsed}ms",
                elapsed=elapsed,
                details={'timeout': timeout_ms},
                cause=e,
            ) from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidUrlError(f"Invalid URL: {e}", cause=e) from e
        except httpx.TooManyRedirects as e:
            raise NetworkError(f"Too many redirects: {e}", cause=e, retryable=False) from e
        except httpx.RequestError as e:
            raise self._classify_transport_error(e) from e

        return self._build_response(response, config.url, self._elapsed_ms(start))

    def _classify_transport_error(self, exc: httpx.RequestError) -> ExecutionError:
        cause = exc.__cause__ or exc.__context__
        text = f"{exc} {cause or ''}".lower()

        if isinstance(cause, ssl.SSLError) or any(marker in text for marker in SSL_MARKERS):
            return SslError(f"SSL/TLS error: {exc}", cause=exc)
        if any(marker in text for marker in DNS_MARKERS):
            return DnsError(f"DNS resolution failed: {exc}", cause=exc)
        if isinstance(cause, ConnectionRefusedError) or any(marker in text for marker in REFUSED_MARKERS):
            return NetworkError(f"Connection refused: {exc}", cause=exc, retryable=False)
        return NetworkError(f"Network error: {exc or exc.__class__.__name__}", cause=exc)

    def _build_response(self, response: httpx.Response, requested_url: str, elapsed: int) -> HttpResponse:
        content_type = response.headers.get('content-type', '').lower()

        if 'json' in content_type:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        elif content_type.startswith('text/'):
            body = response.text
        else:
            body = response.content

        final_url = str(response.url)
        return HttpResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            body=body,
            response_time=elapsed,
            timestamp=datetime.now(timezone.utc).isoformat(),
            url=requested_url,
            final_url=final_url,
            redirected=bool(response.history),
        )

    @staticmethod
    def _has_header(headers: Dict[str, str], name: str) -> bool:
        return any(key.lower() == name for key in headers)

    @staticmethod
    def _get_header(headers: Dict[str, str], name: str) -> str:
        for key, value in headers.items():
            if key.lower() == name:
                return value
        return ''

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
