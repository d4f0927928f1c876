"""Quota-gated access to the external advisory service.

Every advisory call goes through :class:`AdvisoryGate`, which enforces the
call order: response cache, then quota check, then ``record_request``, then
the remote call. The gate returns ``None`` for the steady-state "no answer"
outcomes (quota exhausted, no client configured) and raises for failures, so
the arbiter can route both to its deterministic ladder.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Protocol

from at_a_glance.llm.client import LLMClient
from at_a_glance.llm.context import AdvisoryContext, format_advisory_message
from at_a_glance.llm.loader import PromptDefinition
from at_a_glance.pipeline.quota import AdvisoryCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = {"insight": 60, "prioritization": 40}


class AdvisoryError(Exception):
    """The advisory service answered, but not with a usable status line."""


class AdvisoryClient(Protocol):
    def complete(self, call_type: str, context: AdvisoryContext) -> str:
        ...


class PromptedLLMAdvisor:
    """Advisory client that renders a prompt definition and calls the LLM."""

    def __init__(self, llm: LLMClient, prompts: Dict[str, PromptDefinition]):
        self.llm = llm
        self.prompts = prompts

    def complete(self, call_type: str, context: AdvisoryContext) -> str:
        prompt = self.prompts.get(call_type)
        if prompt is None:
            raise AdvisoryError(f"No prompt defined for call type '{call_type}'")
        message = format_advisory_message(context, prompt.max_chars)
        return self.llm.run(prompt.system_prompt, message, max_tokens=prompt.max_tokens)


def clean_response(raw: Optional[str], max_chars: int) -> str:
    """First non-empty line, stripped of quotes and markdown, truncated to ``max_chars``."""
    if not raw:
        return ""
    for line in raw.strip().splitlines():
        line = line.strip().strip("`*").strip().strip("\"'").strip()
        if line:
            if len(line) > max_chars:
                line = line[: max_chars - 1].rstrip() + "…"
            return line
    return ""


class AdvisoryGate:
    def __init__(
        self,
        cache: AdvisoryCache,
        client: Optional[AdvisoryClient],
        timeout: float = 20.0,
        max_chars: Optional[Dict[str, int]] = None,
    ):
        self.cache = cache
        self.client = client
        self.timeout = timeout
        self.max_chars = {**DEFAULT_MAX_CHARS, **(max_chars or {})}

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def ask(self, call_type: str, context: AdvisoryContext) -> Optional[str]:
        key = self.cache.cache_key(call_type, context.digest())
        cached = self.cache.get_cached(key)
        if cached is not None:
            logger.debug("Advisory cache hit for %s", call_type)
            return cached

        if self.client is None:
            return None
        if not self.cache.can_make_request(call_type):
            return None

        # Counted before the call so in-flight and failed calls use quota too.
        self.cache.record_request(call_type)
        raw = await asyncio.wait_for(
            asyncio.to_thread(self.client.complete, call_type, context),
            timeout=self.timeout,
        )
        line = clean_response(raw, self.max_chars.get(call_type, 60))
        if not line:
            raise AdvisoryError(f"Empty {call_type} response")

        self.cache.set_cached(key, line, call_type)
        return line
