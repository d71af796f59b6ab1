"""registry.client_factory

Factory responsible for converting `Settings` (or raw keyword values) into a
fully wired `GenerationClient`: endpoint profile, transport, detector, cache
and parameter store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from llm_dialect.adapters.openai_transport import OpenAITransport
from llm_dialect.client import GenerationClient, ParameterCache
from llm_dialect.config import Settings, load_settings
from llm_dialect.core.exceptions import ConfigurationError
from llm_dialect.detection.detector import ParameterDetector
from llm_dialect.endpoint.profile import resolve_endpoint_profile
from llm_dialect.store import JsonFileParameterStore

if TYPE_CHECKING:
    from llm_dialect.core.abc import AbstractTransport
    from llm_dialect.core.retry import RetryStrategy
    from llm_dialect.core.types import EndpointProfile
    from llm_dialect.registry.endpoint_registry import EndpointRegistry
    from llm_dialect.store import ParameterStore

# Process-wide cache: one CLI run is one process, so this is the session cache.
shared_cache = ParameterCache()


class GenerationClientFactory:
    """Builds generation clients from Settings.

    Clients built without an explicit cache share `shared_cache`.
    """

    @staticmethod
    def resolve_profile(settings: Settings, *, registry: EndpointRegistry | None = None) -> EndpointProfile:
        """Resolve the endpoint profile and check that credentials exist when needed."""
        profile = resolve_endpoint_profile(settings.url, settings.requires_auth, registry=registry)
        if profile.requires_auth and not settings.api_key_value:
            raise ConfigurationError(
                f'{settings.url} requires an API key. Set LLM_DIALECT_API_KEY or LLM_DIALECT_REQUIRES_AUTH=false.'
            )
        return profile

    @staticmethod
    def initialize_client(
        settings: Settings | None = None,
        *,
        transport: AbstractTransport | None = None,
        store: ParameterStore | None = None,
        cache: ParameterCache | None = None,
        retry_strategy: RetryStrategy | None = None,
        registry: EndpointRegistry | None = None,
        logger: logging.Logger | None = None,
    ) -> GenerationClient:
        """Return a GenerationClient for settings.

        Parameters
        ----------
        settings
            Validated settings. Loaded from the environment if None.
        transport
            Pre-built transport (tests, custom HTTP stacks). An
            OpenAITransport is built from settings otherwise.
        store
            Parameter store. Defaults to a JSON file at settings.state_file.
        cache
            Parameter cache. Defaults to the process-wide shared cache.
        retry_strategy
            Retry policy for the default transport.
        registry
            Endpoint pattern table. Defaults to the global registry.
        logger
            Logger handed to every component.

        """
        # Normalize input: load settings from the environment if needed
        settings = settings or load_settings()
        log = logger or logging.getLogger('llm_dialect')

        if transport is None:
            profile = GenerationClientFactory.resolve_profile(settings, registry=registry)
            transport = OpenAITransport(
                profile,
                settings.api_key_value,
                timeout=settings.timeout,
                retry_strategy=retry_strategy,
            )
        log.debug(
            'Endpoint %s: auth=%s, key=%s',
            transport.profile.base_url,
            transport.profile.auth_style.value,
            settings.masked_api_key,
        )

        return GenerationClient(
            transport,
            settings.model,
            detector=ParameterDetector(transport, logger=log),
            cache=cache if cache is not None else shared_cache,
            store=store if store is not None else JsonFileParameterStore(settings.state_file),
            max_output_tokens=settings.max_output_tokens,
            logger=log,
        )
