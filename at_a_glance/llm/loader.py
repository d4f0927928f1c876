"""Load advisory prompt definitions from Markdown files with YAML frontmatter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


@dataclass
class PromptDefinition:
    """A parsed advisory prompt."""

    call_type: str
    description: str
    system_prompt: str
    max_chars: int = 60
    max_tokens: int = 100
    file_path: Optional[str] = None


def load_prompt_file(path: Path) -> Optional[PromptDefinition]:
    """Parse a single prompt markdown file.

    Expected format:
        ---
        call_type: insight
        max_chars: 60
        max_tokens: 100
        ---
        # Prompt body in markdown
    """
    text = path.read_text(encoding="utf-8")

    if not text.startswith("---"):
        logger.warning("Prompt file %s missing YAML frontmatter, skipping", path)
        return None

    parts = text.split("---", 2)
    if len(parts) < 3:
        logger.warning("Prompt file %s has malformed frontmatter, skipping", path)
        return None

    try:
        meta = yaml.safe_load(parts[1].strip())
    except yaml.YAMLError as exc:
        logger.warning("Failed to parse YAML in %s: %s", path, exc)
        return None

    if not isinstance(meta, dict):
        logger.warning("Frontmatter in %s is not a dict, skipping", path)
        return None

    return PromptDefinition(
        call_type=meta.get("call_type", path.stem),
        description=meta.get("description", ""),
        system_prompt=parts[2].strip(),
        max_chars=int(meta.get("max_chars", 60)),
        max_tokens=int(meta.get("max_tokens", 100)),
        file_path=str(path),
    )


def load_prompts(prompts_dir: Path = PROMPTS_DIR) -> Dict[str, PromptDefinition]:
    """Load every prompt .md file in ``prompts_dir``, keyed by call type."""
    if not prompts_dir.is_dir():
        logger.error("Prompts directory not found: %s", prompts_dir)
        return {}

    prompts: Dict[str, PromptDefinition] = {}
    for md_file in sorted(prompts_dir.glob("*.md")):
        defn = load_prompt_file(md_file)
        if defn is None:
            continue
        prompts[defn.call_type] = defn
        logger.debug("Loaded prompt: %s", defn.call_type)
    return prompts
