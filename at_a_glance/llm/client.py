"""LLM client for the advisory call, backed by Claude or Gemini."""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "claude": "claude-haiku-4-5-20251001",
    "gemini": "gemini-3-flash-preview",
}

DEFAULT_MAX_TOKENS = 100

THINKING_BUDGETS = {"off": 0, "minimal": 128, "low": 1024, "medium": 4096, "high": 16384}
THINKING_MODEL_PREFIXES = ("gemini-2.5", "gemini-3")


class LLMClient:
    """Unified interface for calling Claude or Gemini with a short completion budget.

    The API key is resolved by the caller (see ``Settings.api_key``) so this
    class never touches the environment or the keyring itself.
    """

    def __init__(
        self,
        api_key: str,
        provider: str = "claude",
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        thinking_level: str = "minimal",
    ):
        self.provider = provider.lower()
        self.max_tokens = max_tokens
        self.thinking_level = thinking_level

        if self.provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {provider}. Use 'claude' or 'gemini'.")
        if not api_key:
            raise ValueError(f"No API key configured for provider '{self.provider}'")
        if thinking_level not in THINKING_BUDGETS:
            raise ValueError(f"Unknown thinking level: {thinking_level}")

        self.model = model or DEFAULT_MODELS[self.provider]
        if self.provider == "gemini":
            self._init_gemini(api_key)
        else:
            self._init_claude(api_key)

    @property
    def supports_thinking(self) -> bool:
        return self.provider == "gemini" and self.model.startswith(THINKING_MODEL_PREFIXES)

    def _init_gemini(self, api_key: str):
        from google import genai

        self._gemini_client = genai.Client(api_key=api_key)

    def _init_claude(self, api_key: str):
        import anthropic

        self._claude_client = anthropic.Anthropic(api_key=api_key)

    def run(self, system_prompt: str, user_message: str, max_tokens: Optional[int] = None) -> str:
        """Send system + user message to the LLM and return the text response."""
        budget = max_tokens or self.max_tokens
        if self.provider == "gemini":
            return self._run_gemini(system_prompt, user_message, budget)
        return self._run_claude(system_prompt, user_message, budget)

    def _run_gemini(self, system_prompt: str, user_message: str, max_tokens: int) -> str:
        from google.genai import types

        config_kwargs = {"system_instruction": system_prompt, "max_output_tokens": max_tokens}
        if self.supports_thinking:
            budget = THINKING_BUDGETS[self.thinking_level]
            config_kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=budget)
            # Thinking tokens count against the output limit
            config_kwargs["max_output_tokens"] = max_tokens + budget
        config = types.GenerateContentConfig(**config_kwargs)
        response = self._gemini_client.models.generate_content(
            model=self.model,
            contents=user_message,
            config=config,
        )

        # Skip thinking parts
        text_parts = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts:
                if part.text and not getattr(part, "thought", False):
                    text_parts.append(part.text)
        return "".join(text_parts)

    def _run_claude(self, system_prompt: str, user_message: str, max_tokens: int) -> str:
        response = self._claude_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        if not response.content:
            return ""
        return getattr(response.content[0], "text", "") or ""
