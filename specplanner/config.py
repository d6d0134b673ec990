from __future__ import annotations

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from specplanner.errors import AppError, AppErrorCode

DEFAULT_MAX_STEPS = 20


class Settings(BaseSettings):
    # Provider selection
    provider: str = 'openrouter'
    model: str | None = None

    # API keys, read from their conventional environment variable names
    openrouter_api_key: str | None = None
    zai_api_key: str | None = None
    openai_api_key: str | None = None

    # Runtime
    request_timeout: float = 60.0
    max_steps: int = DEFAULT_MAX_STEPS

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')


def load_settings(**overrides: object) -> Settings | AppError:
    """Read settings from the environment (and ``.env``) without raising."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        return AppError(
            AppErrorCode.CONFIG_PARSE_ERROR,
            f'Invalid configuration: {exc.error_count()} error(s)',
            exc.errors(include_url=False),
        )
