from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING

import httpx
import pytest

from llm_dialect.adapters.openai_transport import OpenAITransport, auth_headers, split_endpoint_url
from llm_dialect.core.cancellation import CancellationToken
from llm_dialect.core.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    ProviderHTTPError,
    TransportError,
)
from llm_dialect.core.retry import RetryStrategy
from llm_dialect.core.types import AuthStyle, ChatRequest, EndpointProfile, Message, Role, TokenFieldStyle
from llm_dialect.endpoint.profile import resolve_endpoint_profile

if TYPE_CHECKING:
    from collections.abc import Callable

API_KEY = 'sk-test-1234567890'
NO_RETRY = RetryStrategy(max_attempts=1, base_backoff_sec=0, jitter=False)

REQUEST = ChatRequest(
    model='gpt-4o',
    messages=(Message(role=Role.user, content='Hello!'),),
    temperature=0.2,
    max_output_tokens=5,
    token_field_style=TokenFieldStyle.legacy,
)


def _completion_body(content: str | None = 'Hi!') -> dict:
    choices = [] if content is None else [
        {'index': 0, 'message': {'role': 'assistant', 'content': content}, 'finish_reason': 'stop'},
    ]
    return {
        'id': 'chatcmpl-1',
        'object': 'chat.completion',
        'created': 0,
        'model': 'gpt-4o',
        'choices': choices,
        'usage': {'prompt_tokens': 3, 'completion_tokens': 2, 'total_tokens': 5},
    }


def _transport(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    url: str = 'https://api.example.com/v1/chat/completions',
    auth_style: AuthStyle = AuthStyle.bearer,
    api_key: str | None = API_KEY,
    retry_strategy: RetryStrategy = NO_RETRY,
) -> OpenAITransport:
    profile = EndpointProfile(base_url=url, requires_auth=auth_style is not AuthStyle.none, auth_style=auth_style)
    return OpenAITransport(
        profile,
        api_key,
        retry_strategy=retry_strategy,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_split_endpoint_url() -> None:
    assert split_endpoint_url('http://localhost:11434/v1/chat/completions') == ('http://localhost:11434/v1', {})
    assert split_endpoint_url('https://x.example.com/v1/') == ('https://x.example.com/v1', {})


def test_auth_headers_require_a_key() -> None:
    profile = EndpointProfile(base_url='https://api.example.com/v1/chat/completions')
    with pytest.raises(ConfigurationError):
        auth_headers(profile, None)


def test_bearer_request_shape() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion_body())

    completion = _transport(_handler).send(REQUEST)

    assert completion.content == 'Hi!'
    assert completion.finish_reason == 'stop'
    assert completion.usage.total_tokens == 5  # noqa: PLR2004
    request = seen[0]
    assert request.url.path == '/v1/chat/completions'
    assert request.headers['authorization'] == f'Bearer {API_KEY}'
    body = json.loads(request.content)
    assert body['max_tokens'] == 5  # noqa: PLR2004
    assert 'max_completion_tokens' not in body
    assert body['temperature'] == 0.2  # noqa: PLR2004


def test_vendor_header_endpoint() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion_body())

    url = 'https://acme.openai.azure.com/openai/deployments/gpt4o/chat/completions?api-version=2024-02-01'
    _transport(_handler, url=url, auth_style=AuthStyle.vendor_header).send(REQUEST)

    request = seen[0]
    assert request.headers['api-key'] == API_KEY
    assert 'authorization' not in request.headers
    assert request.url.params['api-version'] == '2024-02-01'
    assert request.url.path == '/openai/deployments/gpt4o/chat/completions'


def test_unauthenticated_endpoint_sends_no_credentials() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion_body())

    _transport(
        _handler,
        url='http://localhost:11434/v1/chat/completions',
        auth_style=AuthStyle.none,
        api_key=None,
    ).send(REQUEST)

    assert 'authorization' not in seen[0].headers
    assert 'api-key' not in seen[0].headers


def test_empty_choices_map_to_no_content() -> None:
    completion = _transport(lambda _: httpx.Response(200, json=_completion_body(None))).send(REQUEST)

    assert completion.content is None
    assert not completion.has_choice


def test_client_error_keeps_status_and_body() -> None:
    body = {'error': {'type': 'invalid_request_error', 'message': 'Unrecognized request argument: max_tokens'}}

    with pytest.raises(ProviderHTTPError) as excinfo:
        _transport(lambda _: httpx.Response(400, json=body)).send(REQUEST)

    assert excinfo.value.status_code == 400  # noqa: PLR2004
    assert json.loads(excinfo.value.body) == body


def test_server_errors_are_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, 'sleep', lambda *_: None)
    calls = {'cnt': 0}

    def _handler(_: httpx.Request) -> httpx.Response:
        calls['cnt'] += 1
        if calls['cnt'] == 1:
            return httpx.Response(503, text='overloaded')
        return httpx.Response(200, json=_completion_body('recovered'))

    transport = _transport(_handler, retry_strategy=RetryStrategy(max_attempts=3, base_backoff_sec=0, jitter=False))

    assert transport.send(REQUEST).content == 'recovered'
    assert calls['cnt'] == 2  # noqa: PLR2004


def test_rate_limit_exhausts_into_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []
    monkeypatch.setattr(time, 'sleep', delays.append)

    def _handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={'retry-after': '7'}, json={'error': {'message': 'slow down'}})

    transport = _transport(_handler, retry_strategy=RetryStrategy(max_attempts=2, base_backoff_sec=0, jitter=False))

    with pytest.raises(TransportError):
        transport.send(REQUEST)

    assert delays == [7.0]


def test_connection_failure_is_retried_then_surfaced(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(time, 'sleep', lambda *_: None)

    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('connection refused', request=request)

    transport = _transport(_handler, retry_strategy=RetryStrategy(max_attempts=2, base_backoff_sec=0, jitter=False))

    with pytest.raises(TransportError):
        transport.send(REQUEST)


def test_cancelled_before_send() -> None:
    calls = {'cnt': 0}

    def _handler(_: httpx.Request) -> httpx.Response:
        calls['cnt'] += 1
        return httpx.Response(200, json=_completion_body())

    cancel = CancellationToken()
    cancel.cancel('stop')

    with pytest.raises(OperationCancelledError, match='stop'):
        _transport(_handler).send(REQUEST, cancel=cancel)

    assert calls['cnt'] == 0


def test_keyless_styles_build_without_sdk_environment_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)

    local = OpenAITransport(resolve_endpoint_profile('http://localhost:11434/v1/chat/completions'), None)
    azure = OpenAITransport(
        resolve_endpoint_profile(
            'https://acme.openai.azure.com/openai/deployments/gpt4o/chat/completions?api-version=2024-02-01',
        ),
        API_KEY,
    )

    assert local.profile.auth_style is AuthStyle.none
    assert azure.profile.auth_style is AuthStyle.vendor_header


def test_cancelled_while_request_in_flight() -> None:
    cancel = CancellationToken()

    def _handler(request: httpx.Request) -> httpx.Response:
        cancel.cancel('user abort')
        raise httpx.ReadError('aborted', request=request)

    with pytest.raises(OperationCancelledError, match='user abort'):
        _transport(_handler).send(REQUEST, cancel=cancel)


def test_cancelled_after_response_arrived() -> None:
    cancel = CancellationToken()

    def _handler(_: httpx.Request) -> httpx.Response:
        cancel.cancel('late abort')
        return httpx.Response(200, json=_completion_body())

    with pytest.raises(OperationCancelledError, match='late abort'):
        _transport(_handler).send(REQUEST, cancel=cancel)
