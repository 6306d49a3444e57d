"""
models/llm_loader.py
────────────────────
Factory that creates and caches LangChain chat models for each agent.
Supports the hosted OpenAI API (default) and a local Ollama server, chosen
by settings.llm_provider. Also handles provider health checks, LangSmith
tracing setup and structured-output calls.
"""
from __future__ import annotations

import logging
import os
from fractions import Fraction
from functools import lru_cache
from typing import Any, Optional, Type, TypeVar

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from pydantic import BaseModel

from autocrm.config.settings import settings
from autocrm.models.model_config import AGENT_TEMP_MAP, AGENT_TIMEOUT_MAP

logger = logging.getLogger(__name__)

OPENAI_MODELS_URL = "https://api.openai.com/v1/models"

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def configure_tracing() -> None:
    """Export LangSmith variables so LangChain picks them up. No-op when tracing is off."""
    if not settings.langchain_tracing_v2:
        return
    os.environ["LANGCHAIN_TRACING_V2"] = "true"
    os.environ["LANGCHAIN_PROJECT"] = settings.langchain_project
    if settings.langchain_api_key:
        os.environ["LANGCHAIN_API_KEY"] = settings.langchain_api_key
    logger.info("LangSmith tracing enabled for project %s", settings.langchain_project)


async def check_llm_health() -> bool:
    """Ping the configured provider to confirm it is reachable."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            if settings.llm_provider == "ollama":
                resp = await client.get(f"{settings.ollama_base_url}/api/tags")
            else:
                resp = await client.get(
                    OPENAI_MODELS_URL,
                    headers={"Authorization": f"Bearer {settings.openai_api_key}"},
                )
            return resp.status_code == 200
    except httpx.HTTPError as exc:
        logger.error("LLM health check failed (%s): %s", settings.llm_provider, exc)
        return False


def _model_name() -> str:
    if settings.llm_provider == "ollama":
        return settings.ollama_model
    return settings.openai_model


@lru_cache(maxsize=16)
def _build_chat_model(provider: str, model: str, temperature_frac: Fraction, timeout: int) -> BaseChatModel:
    """
    Build and cache a chat model instance.
    The temperature is passed as a Fraction to keep the cache key hash-stable.
    """
    temperature = float(temperature_frac)
    if provider == "ollama":
        from langchain_ollama import ChatOllama

        return ChatOllama(
            model=model,
            base_url=settings.ollama_base_url,
            temperature=temperature,
        )

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model,
        api_key=settings.openai_api_key,
        temperature=temperature,
        timeout=timeout,
    )


def get_chat_model(
    agent_name: str,
    model_override: Optional[str] = None,
    temperature_override: Optional[float] = None,
) -> BaseChatModel:
    """
    Public factory used by all agents.

    Args:
        agent_name: One of the agent keys defined in model_config.AGENT_TEMP_MAP.
        model_override: Force a specific model name.
        temperature_override: Override the default temperature.

    Returns:
        Configured chat model (cached per provider/model/temperature/timeout).
    """
    model = model_override or _model_name()
    temperature = temperature_override if temperature_override is not None \
        else AGENT_TEMP_MAP.get(agent_name, 0.3)
    timeout = AGENT_TIMEOUT_MAP.get(agent_name, 60)

    logger.debug(
        "Chat model requested for agent=%s provider=%s model=%s temp=%.1f",
        agent_name, settings.llm_provider, model, temperature,
    )
    temp_frac = Fraction(temperature).limit_denominator(1000)
    return _build_chat_model(settings.llm_provider, model, temp_frac, timeout)


async def ainvoke_structured(
    llm: BaseChatModel,
    schema: Type[SchemaT],
    prompt: Any,
    task: str,
) -> Optional[SchemaT]:
    """
    Run a structured-output call.
    Returns None when the model call fails or the parser produced no object
    (e.g. the model answered without calling the schema function).
    """
    try:
        result = await llm.with_structured_output(schema).ainvoke(prompt)
    except Exception as exc:
        logger.error("%s failed: %s", task, exc)
        return None
    if not isinstance(result, schema):
        logger.warning("%s returned no %s (got %r)", task, schema.__name__, type(result).__name__)
        return None
    return result
