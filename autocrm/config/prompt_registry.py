"""
config/prompt_registry.py
─────────────────────────
Agent system prompts and message templates, read once from prompts.yaml.

  prompt_registry.get_system_prompt("intake")
  prompt_registry.render("order_instruction", prompt=..., account_id=..., today=...)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

PROMPTS_PATH = Path(__file__).parent / "prompts.yaml"


class PromptRegistry:
    """Process-wide store of the YAML prompts; every instantiation returns the same object."""

    _instance: Optional[PromptRegistry] = None

    def __new__(cls, path: Path = PROMPTS_PATH) -> PromptRegistry:
        if cls._instance is None:
            registry = super().__new__(cls)
            registry.agents, registry.templates = _read_prompts(path)
            cls._instance = registry
        return cls._instance

    def get_system_prompt(self, agent_name: str) -> str:
        """System prompt of an agent, or a generic AutoCRM prompt when none is configured."""
        prompt = (self.agents.get(agent_name) or {}).get("system_prompt")
        if prompt:
            return prompt.strip()
        logger.warning("Agent %r has no system_prompt in prompts.yaml", agent_name)
        return f"You are the {agent_name} agent for AutoCRM. Be helpful and concise."

    def render(self, template_name: str, **values: Any) -> str:
        """
        Fill a named template with str.format placeholders.
        KeyError for an unknown template or a placeholder without a value.
        """
        if template_name not in self.templates:
            raise KeyError(f"Template '{template_name}' not found in prompts.yaml")
        try:
            return self.templates[template_name].format(**values).strip()
        except KeyError as exc:
            logger.error("Template %r needs placeholder %s", template_name, exc)
            raise


def _read_prompts(path: Path) -> tuple:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Could not read prompts from %s: %s", path, exc)
        data = {}

    agents: Dict[str, Any] = data.get("agents") or {}
    templates: Dict[str, str] = data.get("templates") or {}
    logger.info("Prompts loaded: %d agents, %d templates", len(agents), len(templates))
    return agents, templates


prompt_registry = PromptRegistry()
