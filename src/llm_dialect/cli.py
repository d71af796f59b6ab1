"""Command line entry point for llm-dialect."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import TYPE_CHECKING

from llm_dialect.config import load_settings
from llm_dialect.core.cancellation import CancellationToken
from llm_dialect.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    LLMDialectError,
    OperationCancelledError,
)
from llm_dialect.registry.client_factory import GenerationClientFactory

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from llm_dialect.client import GenerationClient

_LOGGER = logging.getLogger('llm_dialect.cli')

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_CANCELLED = 130


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s', stream=sys.stderr)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='llm-dialect',
        description='Detect and use the request dialect of an OpenAI-compatible endpoint',
    )
    parser.add_argument('--url', help='chat completions URL (LLM_DIALECT_URL)')
    parser.add_argument('--model', help='model id (LLM_DIALECT_MODEL)')
    parser.add_argument('--no-auth', action='store_true', help='endpoint does not need an API key')
    parser.add_argument('--state-file', help='where detected parameters are persisted (LLM_DIALECT_STATE_FILE)')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('detect', help='Probe the endpoint and persist the accepted request shape')

    generate_parser = subparsers.add_parser('generate', help='Generate a completion for a prompt')
    generate_parser.add_argument('prompt', nargs='?', help='prompt text; read from stdin when omitted')
    generate_parser.add_argument('--system', help='optional system prompt')
    generate_parser.add_argument('--max-output-tokens', type=int, help='output token limit for this call')
    return parser


def _cmd_detect(client: GenerationClient, _args: argparse.Namespace, cancel: CancellationToken) -> int:
    params = client.test_connection(cancel=cancel)
    print(json.dumps({'model': client.model, 'endpoint': client.profile.base_url, **params.model_dump(mode='json')}))
    return EXIT_OK


def _cmd_generate(client: GenerationClient, args: argparse.Namespace, cancel: CancellationToken) -> int:
    prompt = args.prompt if args.prompt is not None else sys.stdin.read()
    if not prompt.strip():
        _LOGGER.error('Prompt is empty')
        return EXIT_CONFIGURATION
    completion = client.generate(
        prompt,
        system_prompt=args.system,
        max_output_tokens=args.max_output_tokens,
        cancel=cancel,
    )
    print(completion.content or '')
    if completion.usage is not None:
        _LOGGER.info(
            'Tokens: %s input, %s output, %s total',
            completion.usage.prompt_tokens,
            completion.usage.completion_tokens,
            completion.usage.total_tokens,
        )
    return EXIT_OK


_COMMANDS: dict[str, Callable[[GenerationClient, argparse.Namespace, CancellationToken], int]] = {
    'detect': _cmd_detect,
    'generate': _cmd_generate,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Parse argv, build a client from the environment and run one command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    cancel = CancellationToken()
    try:
        settings = load_settings(
            url=args.url,
            model=args.model,
            requires_auth=False if args.no_auth else None,
            state_file=args.state_file,
        )
        client = GenerationClientFactory.initialize_client(settings)
        return _COMMANDS[args.command](client, args, cancel)
    except KeyboardInterrupt:
        cancel.cancel('Interrupted by user')
        _LOGGER.error('Interrupted')
        return EXIT_CANCELLED
    except OperationCancelledError as exc:
        _LOGGER.error('%s', exc)
        return EXIT_CANCELLED
    except ConfigurationError as exc:
        _LOGGER.error('%s', exc)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        _LOGGER.error('%s', exc)
        return EXIT_AUTHENTICATION
    except LLMDialectError as exc:
        _LOGGER.error('%s', exc)
        return EXIT_FAILURE


if __name__ == '__main__':  # pragma: no cover - manual execution
    raise SystemExit(main())
