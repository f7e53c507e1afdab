from __future__ import annotations

from difflens_core.oracles.base import BaseOracle


class AnthropicOracle(BaseOracle):
    MODEL = "claude-sonnet-4-20250514"
    # Slightly above OpenAI's 0.2 for more natural phrasing; still low enough
    # to keep the JSON structure stable.
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, model: str | None = None, **kwargs):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'difflens[anthropic]'"
            )
        super().__init__(**kwargs)
        self.model = model or self.MODEL
        self.client = AsyncAnthropic(api_key=api_key)

    async def _call_api(self, prompt: str) -> str:
        # anthropic is optional; __init__ already checked it is installed.
        from anthropic.types import TextBlock

        response = await self.client.messages.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
