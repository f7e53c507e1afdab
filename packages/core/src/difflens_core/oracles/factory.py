from __future__ import annotations

from difflens_core.oracles.base import BaseOracle

PROVIDERS = ("anthropic", "openai")


def get_oracle(config: dict) -> BaseOracle:
    """Instantiate the configured provider.

    SDK modules are imported lazily so only the selected provider's package
    needs to be installed.
    """
    provider = config["model"]
    options = {
        "model": config.get("model_name"),
        "timeout_seconds": config.get("timeout_seconds"),
        "max_retries": config.get("max_retries"),
    }
    if provider == "anthropic":
        from difflens_core.oracles.anthropic import AnthropicOracle

        return AnthropicOracle(api_key=config["anthropic_api_key"], **options)
    if provider == "openai":
        from difflens_core.oracles.openai import OpenAIOracle

        return OpenAIOracle(api_key=config["openai_api_key"], **options)
    raise ValueError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")
