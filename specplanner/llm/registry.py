"""Provider resolution: Settings -> ready AgentRuntime.

Selecting and configuring a provider is a thin collaborator around the core.
Everything it needs arrives through ``Settings``; nothing is cached here.
"""

from __future__ import annotations

import httpx

from specplanner.config import Settings
from specplanner.errors import AppError, AppErrorCode
from specplanner.llm.base import AgentRuntime, ChatBackend
from specplanner.llm.loop import ToolLoopRuntime
from specplanner.llm.openai_chat import OpenAIChatBackend, OpenAIChatConfig
from specplanner.llm.openai_responses import OpenAIResponsesBackend, OpenAIResponsesConfig

SUPPORTED_PROVIDERS = ('openrouter', 'zai', 'openai')

DEFAULT_MODEL_BY_PROVIDER = {
    'openrouter': 'amazon/nova-2-lite-v1:free',
    'zai': 'GLM-4.6',
    'openai': 'gpt-4.1-mini',
}

API_KEY_ENV_BY_PROVIDER = {
    'openrouter': 'OPENROUTER_API_KEY',
    'zai': 'ZAI_API_KEY',
    'openai': 'OPENAI_API_KEY',
}

BASE_URL_BY_PROVIDER = {
    'openrouter': 'https://openrouter.ai/api/v1',
    'zai': 'https://api.z.ai/api/coding/paas/v4',
    'openai': 'https://api.openai.com/v1',
}


def resolve_provider(settings: Settings) -> str | AppError:
    provider = (settings.provider or '').strip().lower() or 'openrouter'
    if provider not in SUPPORTED_PROVIDERS:
        return AppError(
            AppErrorCode.VALIDATION_ERROR,
            'Unsupported provider value in PROVIDER env variable',
            {'provider': provider, 'allowed_providers': list(SUPPORTED_PROVIDERS)},
        )
    return provider


def _api_key(settings: Settings, provider: str) -> str | AppError:
    key = getattr(settings, f'{provider}_api_key', None)
    key = key.strip() if isinstance(key, str) else ''
    if not key:
        env_key = API_KEY_ENV_BY_PROVIDER[provider]
        return AppError(
            AppErrorCode.LLM_ERROR,
            f'Missing API key for provider {provider}. Set {env_key}.',
            {'provider': provider, 'env_key': env_key},
        )
    return key


def create_backend(settings: Settings, client: httpx.AsyncClient | None = None) -> ChatBackend | AppError:
    """Build the ChatBackend for the configured provider."""
    provider = resolve_provider(settings)
    if isinstance(provider, AppError):
        return provider
    api_key = _api_key(settings, provider)
    if isinstance(api_key, AppError):
        return api_key

    model = settings.model or DEFAULT_MODEL_BY_PROVIDER[provider]
    base_url = BASE_URL_BY_PROVIDER[provider]
    if provider == 'openai':
        return OpenAIResponsesBackend(
            OpenAIResponsesConfig(api_key=api_key, base_url=base_url, model=model, timeout=settings.request_timeout),
            client=client,
        )
    return OpenAIChatBackend(
        OpenAIChatConfig(api_key=api_key, model=model, base_url=base_url, timeout=settings.request_timeout),
        client=client,
    )


def create_agent_runtime(settings: Settings, client: httpx.AsyncClient | None = None) -> AgentRuntime | AppError:
    """Resolve the configured provider into a ready AgentRuntime."""
    backend = create_backend(settings, client=client)
    if isinstance(backend, AppError):
        return backend
    return ToolLoopRuntime(backend, default_max_steps=settings.max_steps)
