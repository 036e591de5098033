"""
Tests for HttpRequestExecutor
"""

import asyncio
import base64
import json

import httpx
import pytest

from apiflow.errors import (
    DnsError,
    ErrorCode,
    InvalidBodyError,
    InvalidHeadersError,
    InvalidMethodError,
    InvalidUrlError,
    NetworkError,
    RequestTimeoutError,
    SslError,
)
from apiflow.flow_engine.http_executor import (
    DEFAULT_USER_AGENT,
    HttpRequestConfig,
    HttpRequestExecutor,
    MultipartPayload,
)
from apiflow.flow_engine.url_validator import UrlPolicy


class CallCounter:
    """MockTransport handler failing a fixed number of times before answering"""

    def __init__(self, failures=0, error=None, response=None):
        self.failures = failures
        self.error = error
        self.response = response or httpx.Response(200, json={'ok': True})
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if len(self.requests) <= self.failures:
            raise self.error(request)
        return self.response


def connection_reset(request):
    return httpx.ConnectError('Connection reset by peer', request=request)


def dns_failure(request):
    return httpx.ConnectError('[Errno -2] Name or service not known', request=request)


def make_executor(handler, sleep_recorder, **kwargs):
    return HttpRequestExecutor(transport=httpx.MockTransport(handler), sleep=sleep_recorder, **kwargs)


class TestExecute:
    """Test single requests"""

    @pytest.mark.asyncio
    async def test_json_response(self, sleep_recorder):
        """Test that JSON responses are parsed and timing is recorded"""
        handler = CallCounter(response=httpx.Response(201, json={'id': 1}))
        executor = make_executor(handler, sleep_recorder)

        response = await executor.execute(HttpRequestConfig(method='post', url='http://api.test/items'))

        assert response.status == 201
        assert response.status_text == 'Created'
        assert response.body == {'id': 1}
        assert response.url == 'http://api.test/items'
        assert response.final_url == 'http://api.test/items'
        assert response.redirected is False
        assert response.response_time >= 0
        assert handler.requests[0].method == 'POST'

    @pytest.mark.asyncio
    async def test_non_2xx_is_not_an_error(self, sleep_recorder):
        """Test that error statuses are returned as responses"""
        handler = CallCounter(response=httpx.Response(404, text='missing', headers={'content-type': 'text/plain'}))
        executor = make_executor(handler, sleep_recorder)

        response = await executor.execute(HttpRequestConfig(method='GET', url='http://api.test/nope'))

        assert response.status == 404
        assert response.body == 'missing'

    @pytest.mark.asyncio
    async def test_binary_response(self, sleep_recorder):
        """Test that non-text bodies stay bytes and serialize as base64"""
        handler = CallCounter(response=httpx.Response(
            200, content=b'\x00\x01', headers={'content-type': 'application/octet-stream'}
        ))
        executor = make_executor(handler, sleep_recorder)

        response = await executor.execute(HttpRequestConfig(method='GET', url='http://api.test/file'))

        assert response.body == b'\x00\x01'
        data = response.to_dict()
        assert data['body'] == base64.b64encode(b'\x00\x01').decode('ascii')
        assert data['body_encoding'] == 'base64'

    @pytest.mark.asyncio
    async def test_default_headers(self, sleep_recorder):
        """Test User-Agent and JSON Content-Type defaults"""
        handler = CallCounter()
        executor = make_executor(handler, sleep_recorder)

        await executor.execute(HttpRequestConfig(method='POST', url='http://api.test/items', body={'a': 1}))

        request = handler.requests[0]
        assert request.headers['user-agent'] == DEFAULT_USER_AGENT
        assert request.headers['content-type'] == 'application/json'
        assert json.loads(request.content) == {'a': 1}

    @pytest.mark.asyncio
    async def test_explicit_headers_win(self, sleep_recorder):
        """Test that caller headers are not overridden"""
        handler = CallCounter()
        executor = make_executor(handler, sleep_recorder)

        await executor.execute(HttpRequestConfig(
            method='POST',
            url='http://api.test/items',
            headers={'User-Agent': 'custom', 'Content-Type': 'text/plain', 'X-Count': 3, 'X-Skip': None},
            body='raw text',
        ))

        request = handler.requests[0]
        assert request.headers['user-agent'] == 'custom'
        assert request.headers['content-type'] == 'text/plain'
        assert request.headers['x-count'] == '3'
        assert 'x-skip' not in request.headers
        assert request.content == b'raw text'

    @pytest.mark.asyncio
    async def test_form_body(self, sleep_recorder):
        """Test urlencoded bodies when the form Content-Type is set"""
        handler = CallCounter()
        executor = make_executor(handler, sleep_recorder)

        await executor.execute(HttpRequestConfig(
            method='POST',
            url='http://api.test/login',
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
            body={'user': 'ana', 'pass': 'x y'},
        ))

        assert handler.requests[0].content == b'user=ana&pass=x+y'

    @pytest.mark.asyncio
    async def test_multipart_body(self, sleep_recorder):
        """Test that multipart bodies get the boundary Content-Type from httpx"""
        handler = CallCounter()
        executor = make_executor(handler, sleep_recorder)

        await executor.execute(HttpRequestConfig(
            method='POST',
            url='http://api.test/upload',
            body=MultipartPayload(fields={'name': 'doc'}, files={'file': ('a.txt', b'hello', 'text/plain')}),
        ))

        content_type = handler.requests[0].headers['content-type']
        assert content_type.startswith('multipart/form-data; boundary=')


class TestInputValidation:
    """Test request validation before sending"""

    @pytest.mark.asyncio
    async def test_invalid_method(self, sleep_recorder):
        """Test that unknown methods are refused"""
        handler = CallCounter()
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(InvalidMethodError):
            await executor.execute_with_retry(HttpRequestConfig(method='FETCH', url='http://api.test'), 3)

        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_invalid_url(self, sleep_recorder):
        """Test malformed URLs and disallowed schemes"""
        executor = make_executor(CallCounter(), sleep_recorder)

        with pytest.raises(InvalidUrlError):
            await executor.execute(HttpRequestConfig(method='GET', url='not a url'))

        with pytest.raises(InvalidUrlError) as exc_info:
            await executor.execute(HttpRequestConfig(method='GET', url='ftp://files.test/a'))
        assert exc_info.value.code == ErrorCode.INVALID_URL

    @pytest.mark.asyncio
    async def test_url_policy(self, sleep_recorder):
        """Test that the destination policy is enforced"""
        executor = make_executor(CallCounter(), sleep_recorder, url_policy=UrlPolicy(allow_localhost=False))

        with pytest.raises(InvalidUrlError) as exc_info:
            await executor.execute(HttpRequestConfig(method='GET', url='http://localhost:8000/'))
        assert 'Localhost' in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_headers(self, sleep_recorder):
        """Test that structured header values are refused"""
        executor = make_executor(CallCounter(), sleep_recorder)

        with pytest.raises(InvalidHeadersError):
            await executor.execute(HttpRequestConfig(
                method='GET', url='http://api.test', headers={'X-Data': {'a': 1}}
            ))

    @pytest.mark.asyncio
    async def test_unserializable_body(self, sleep_recorder):
        """Test that bodies JSON cannot encode are refused"""
        executor = make_executor(CallCounter(), sleep_recorder)

        with pytest.raises(InvalidBodyError):
            await executor.execute(HttpRequestConfig(method='POST', url='http://api.test', body={'a': object()}))


class TestRetry:
    """Test retry and error classification"""

    @pytest.mark.asyncio
    async def test_succeeds_after_two_failures(self, sleep_recorder):
        """Test that transient failures are retried with exponential backoff"""
        handler = CallCounter(failures=2, error=connection_reset)
        executor = make_executor(handler, sleep_recorder)

        response = await executor.execute_with_retry(HttpRequestConfig(method='GET', url='http://api.test'), 3)

        assert response.status == 200
        assert len(handler.requests) == 3
        assert sleep_recorder.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, sleep_recorder):
        """Test that the last error is raised once retries are exhausted"""
        handler = CallCounter(failures=10, error=connection_reset)
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute_with_retry(HttpRequestConfig(method='GET', url='http://api.test'), 2)

        assert exc_info.value.retryable is True
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_dns_failure_is_not_retried(self, sleep_recorder):
        """Test that DNS failures fail fast"""
        handler = CallCounter(failures=10, error=dns_failure)
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(DnsError) as exc_info:
            await executor.execute_with_retry(HttpRequestConfig(method='GET', url='http://unknown.test'), 3)

        assert exc_info.value.code == ErrorCode.DNS_ERROR
        assert len(handler.requests) == 1
        assert sleep_recorder.calls == []

    @pytest.mark.asyncio
    async def test_connection_refused_is_not_retried(self, sleep_recorder):
        """Test that refused connections fail fast"""
        handler = CallCounter(
            failures=10,
            error=lambda request: httpx.ConnectError('[Errno 111] Connection refused', request=request),
        )
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute_with_retry(HttpRequestConfig(method='GET', url='http://api.test'), 3)

        assert exc_info.value.retryable is False
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_ssl_failure(self, sleep_recorder):
        """Test that certificate errors map to SslError"""
        handler = CallCounter(
            failures=10,
            error=lambda request: httpx.ConnectError('[SSL: CERTIFICATE_VERIFY_FAILED]', request=request),
        )
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(SslError):
            await executor.execute_with_retry(HttpRequestConfig(method='GET', url='https://api.test'), 3)

        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_timeout(self, sleep_recorder):
        """Test that httpx timeouts become retryable RequestTimeoutErrors"""
        handler = CallCounter(
            failures=10,
            error=lambda request: httpx.ReadTimeout('timed out', request=request),
        )
        executor = make_executor(handler, sleep_recorder)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await executor.execute_with_retry(HttpRequestConfig(method='GET', url='http://api.test'), 1)

        assert exc_info.value.code == ErrorCode.TIMEOUT_ERROR
        assert 'elapsed' in exc_info.value.details
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self, sleep_recorder):
        """Test that a slow server hits the per-attempt timeout"""
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200)

        executor = make_executor(slow, sleep_recorder)

        with pytest.raises(RequestTimeoutError):
            await executor.execute(HttpRequestConfig(method='GET', url='http://api.test', timeout=50))

    def test_backoff_is_capped(self):
        """Test the backoff schedule"""
        delays = [HttpRequestExecutor.backoff_delay(attempt) for attempt in range(6)]
        assert delays == [1000, 2000, 4000, 8000, 10000, 10000]
