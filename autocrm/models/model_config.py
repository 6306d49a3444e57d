"""
models/model_config.py
──────────────────────
Temperature and timeout constants for the chat models behind each agent.
Agent files look these up by agent name instead of hardcoding sampling
parameters.
"""
from __future__ import annotations

# ── Timeout Configuration (seconds) ──────────────────────────────────────────
TIMEOUT_ASSISTANT = 60    # tool-calling turns can be long
TIMEOUT_INTAKE = 45
TIMEOUT_EXTRACTION = 30
TIMEOUT_SUPPORT = 45

# ── Temperature Settings ─────────────────────────────────────────────────────
TEMP_TOOL_CALLING = 0.0   # deterministic tool selection and arguments
TEMP_CONVERSATIONAL = 0.7
TEMP_EXTRACTION = 0.0
TEMP_SUPPORT = 0.3

# ── Role → Settings Mapping ──────────────────────────────────────────────────
AGENT_TEMP_MAP: dict[str, float] = {
    "order_assistant": TEMP_TOOL_CALLING,
    "intake":          TEMP_CONVERSATIONAL,
    "extractor":       TEMP_EXTRACTION,
    "classifier":      TEMP_EXTRACTION,
    "sentiment":       TEMP_EXTRACTION,
    "support":         TEMP_SUPPORT,
}

AGENT_TIMEOUT_MAP: dict[str, int] = {
    "order_assistant": TIMEOUT_ASSISTANT,
    "intake":          TIMEOUT_INTAKE,
    "extractor":       TIMEOUT_EXTRACTION,
    "classifier":      TIMEOUT_EXTRACTION,
    "sentiment":       TIMEOUT_EXTRACTION,
    "support":         TIMEOUT_SUPPORT,
}
