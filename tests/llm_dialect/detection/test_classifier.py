from __future__ import annotations

import httpx
import pytest

from llm_dialect.core.exceptions import ProviderHTTPError, TransientNetworkError, TransportError
from llm_dialect.detection.classifier import (
    AuthenticationFailure,
    ContextLengthExceeded,
    TransientNetwork,
    Unknown,
    UnsupportedParameter,
    UnsupportedValue,
    classified_error_adapter,
    classify_error,
    classify_exception,
    hint_temperature,
    is_recoverable,
    parse_error_body,
)


def test_parse_envelope_shape() -> None:
    body = parse_error_body(b'{"error": {"type": "invalid_request_error", "message": "boom", "param": "x"}}')
    assert body.shape == 'envelope'
    assert body.message == 'boom'
    assert body.type == 'invalid_request_error'
    assert body.param == 'x'


def test_parse_flat_shape() -> None:
    body = parse_error_body('{"message": "flat boom", "code": 400}')
    assert body.shape == 'flat'
    assert body.message == 'flat boom'
    assert body.code == '400'


def test_parse_plain_text() -> None:
    body = parse_error_body('<html>Bad Gateway</html>')
    assert body.shape == 'text'
    assert body.message == '<html>Bad Gateway</html>'


@pytest.mark.parametrize(
    ('status', 'body'),
    [
        (401, '{"error": {"message": "Invalid API key"}}'),
        (403, 'forbidden'),
        (400, '{"error": {"code": "invalid_api_key", "message": "Incorrect API key provided: sk-***"}}'),
        (400, '{"message": "Unauthorized"}'),
    ],
)
def test_authentication_failure(status: int, body: str) -> None:
    assert isinstance(classify_error(status, body, 'probe'), AuthenticationFailure)


def test_unsupported_modern_token_field() -> None:
    result = classify_error(
        400,
        '{"error":{"type":"invalid_request_error","message":"Unrecognized request argument: max_completion_tokens"}}',
    )
    assert isinstance(result, UnsupportedParameter)
    assert result.field_name == 'max_completion_tokens'
    assert is_recoverable(result)


def test_unsupported_legacy_field_names_the_rejected_one() -> None:
    message = "Unsupported parameter: 'max_tokens' is not supported with this model. Use 'max_completion_tokens' instead."
    result = classify_error(400, f'{{"error": {{"type": "invalid_request_error", "message": "{message}"}}}}')
    assert isinstance(result, UnsupportedParameter)
    assert result.field_name == 'max_tokens'


def test_param_field_wins_over_text() -> None:
    body = (
        '{"error": {"type": "invalid_request_error", "param": "max_completion_tokens", '
        '"code": "unsupported_parameter", "message": "Unsupported parameter: use max_tokens"}}'
    )
    result = classify_error(400, body)
    assert isinstance(result, UnsupportedParameter)
    assert result.field_name == 'max_completion_tokens'


def test_unsupported_temperature_parameter() -> None:
    result = classify_error(
        400,
        '{"error": {"type": "invalid_request_error", "message": "Unsupported parameter: \'temperature\' is not supported"}}',
    )
    assert isinstance(result, UnsupportedParameter)
    assert result.field_name == 'temperature'


def test_unsupported_temperature_value_with_range() -> None:
    result = classify_error(400, '{"error":{"message":"temperature must be between 0 and 1"}}', 'probe')
    assert isinstance(result, UnsupportedValue)
    assert result.field_name == 'temperature'
    assert result.allowed_range == (0.0, 1.0)
    assert result.suggested_value is None
    assert result.context == 'probe'


def test_unsupported_temperature_value_with_default() -> None:
    body = (
        '{"error": {"message": "Unsupported value: \'temperature\' does not support 0.2 with this model. '
        'Only the default (1) value is supported.", "type": "invalid_request_error", "code": "unsupported_value"}}'
    )
    result = classify_error(400, body)
    assert isinstance(result, UnsupportedValue)
    assert result.suggested_value == 1.0


def test_context_length_exceeded() -> None:
    result = classify_error(
        400,
        '{"error": {"message": "This model\'s maximum context length is 4097 tokens. However, you requested 5000 tokens",'
        ' "type": "invalid_request_error", "code": "context_length_exceeded"}}',
    )
    assert isinstance(result, ContextLengthExceeded)
    assert not is_recoverable(result)


def test_unknown_keeps_raw_message() -> None:
    result = classify_error(418, 'I am a teapot')
    assert isinstance(result, Unknown)
    assert result.raw_message == 'I am a teapot'
    assert result.status_code == 418  # noqa: PLR2004


@pytest.mark.parametrize(
    'exc',
    [
        TransientNetworkError('reset'),
        TransportError('Retry limit exceeded'),
        TimeoutError('timed out'),
        ConnectionResetError('reset by peer'),
        httpx.ConnectTimeout('connect timeout'),
    ],
)
def test_network_exceptions(exc: BaseException) -> None:
    assert isinstance(classify_exception(exc), TransientNetwork)


def test_provider_http_error_is_classified_by_body() -> None:
    result = classify_exception(ProviderHTTPError(401, '{"error": {"message": "bad key"}}'), 'generation')
    assert isinstance(result, AuthenticationFailure)
    assert result.context == 'generation'


def test_discriminated_union_round_trip() -> None:
    dumped = UnsupportedValue(field_name='temperature', suggested_value=1.0, message='m').model_dump()
    assert isinstance(classified_error_adapter.validate_python(dumped), UnsupportedValue)


@pytest.mark.parametrize(
    ('message', 'expected'),
    [
        ('temperature must be between 0 and 1', (None, (0.0, 1.0))),
        ('temperature must be between 1.0 and 0.5', (None, (0.5, 1.0))),
        ('temperature must be 1', (1.0, None)),
        ('Only the default (1) value is supported.', (1.0, None)),
        ('temperature must be 7', (None, None)),
        ('temperature is not valid', (None, None)),
    ],
)
def test_hint_temperature(message: str, expected: tuple) -> None:
    assert hint_temperature(message) == expected
