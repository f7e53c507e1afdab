from __future__ import annotations

try:
    from openai import AsyncOpenAI as _AsyncOpenAI
except ImportError:
    _AsyncOpenAI = None  # type: ignore[assignment,misc]

from difflens_core.oracles.base import BaseOracle


class OpenAIOracle(BaseOracle):
    MODEL = "gpt-4o"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None, **kwargs):
        if _AsyncOpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. Install it with: pip install 'difflens[openai]'"
            )
        super().__init__(**kwargs)
        self.model = model or self.MODEL
        self.client = _AsyncOpenAI(api_key=api_key)

    async def _call_api(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return response.choices[0].message.content or ""
