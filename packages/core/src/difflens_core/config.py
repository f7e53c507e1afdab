import os
from pathlib import Path
from typing import Optional

import yaml

from difflens_core.oracles.factory import PROVIDERS

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "model_name": None,  # None = provider default
    "min_severity": 1,
    "custom_rules": "",
    "custom_rules_file": None,  # path to a file appended to the built-in review rules
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "skip_non_code": True,
    "max_prompt_chars": 100000,
    "timeout_seconds": 120,
    "max_retries": 3,
}


def load_config(config_path: str = ".difflens.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .difflens.yml in the current directory
      3. CLI argument overrides

    A single ``exclude`` pattern is accepted in place of a list.

    Raises ValueError for an unknown model provider, an out-of-range
    ``min_severity`` or an ``exclude`` that is not a list of strings.
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if config["model"] not in PROVIDERS:
        raise ValueError(f"Unknown model provider: {config['model']!r}. Choose from {', '.join(PROVIDERS)}.")
    severity = config["min_severity"]
    if isinstance(severity, bool) or not isinstance(severity, int) or not 1 <= severity <= 5:
        raise ValueError(f"min_severity must be an integer from 1 to 5, got {severity!r}.")

    exclude = config["exclude"] or []
    if isinstance(exclude, str):
        # A single pattern written as a YAML scalar.
        exclude = [exclude]
    if not isinstance(exclude, (list, tuple)) or not all(isinstance(p, str) for p in exclude):
        raise ValueError(f"exclude must be a pattern or a list of patterns, got {exclude!r}.")
    config["exclude"] = list(exclude)

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_custom_rules(config: dict) -> str:
    """
    Return the project's extra review rules.

    Inline ``custom_rules`` come first, followed by the contents of
    ``custom_rules_file`` (relative to cwd) when one is configured.
    """
    parts = []
    inline = (config.get("custom_rules") or "").strip()
    if inline:
        parts.append(inline)

    rules_path = config.get("custom_rules_file")
    if rules_path:
        p = Path(rules_path)
        if not p.exists():
            raise FileNotFoundError(f"Custom rules file not found: {rules_path}")
        text = p.read_text().strip()
        if text:
            parts.append(text)

    return "\n\n".join(parts)
