from at_a_glance.llm.client import LLMClient
from at_a_glance.llm.loader import PromptDefinition, load_prompts

__all__ = [
    "LLMClient",
    "PromptDefinition",
    "load_prompts",
]
