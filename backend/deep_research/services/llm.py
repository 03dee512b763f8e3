"""
LLM Client Management

Provides cached instances of LLM clients to avoid recreating
connections for every call, plus the step that turns a structured-output
result into a typed schema.
"""
from functools import lru_cache
from typing import Any, Type, TypeVar

from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from pydantic import BaseModel, ValidationError

from deep_research.core.config import settings
from deep_research.core.logging import get_logger

logger = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@lru_cache(maxsize=4)
def get_llm(model: str = "", temperature: float = 0.0) -> ChatOpenAI:
    """
    Get a cached chat model instance.

    Args:
        model: OpenAI model name; empty means the configured default
        temperature: Temperature for generation (0 = deterministic)

    Returns:
        Cached ChatOpenAI instance
    """
    return ChatOpenAI(
        model=model or settings.LLM_MODEL,
        temperature=temperature,
        api_key=settings.OPENAI_API_KEY
    )


@lru_cache(maxsize=2)
def get_embeddings(model: str = "") -> OpenAIEmbeddings:
    """Get a cached embeddings instance."""
    return OpenAIEmbeddings(
        model=model or settings.EMBEDDING_MODEL,
        api_key=settings.OPENAI_API_KEY
    )


def clear_llm_cache():
    """
    Clear the LLM client cache.

    Useful for testing or when you need to force re-initialization.
    """
    get_llm.cache_clear()
    get_embeddings.cache_clear()


def decode_llm_output(schema: Type[SchemaT], result: Any) -> SchemaT:
    """
    Turn a structured-output result into `schema`.

    `result` is what `with_structured_output(schema, include_raw=True)`
    returns: a dict with "raw", "parsed" and "parsing_error". A parsing
    error or an empty parse yields `schema()` with all defaults.

    Args:
        schema: Pydantic model whose fields all have defaults
        result: Structured-output result (or an already parsed value)

    Returns:
        Instance of schema
    """
    if isinstance(result, dict) and "parsed" in result:
        if result.get("parsing_error") is not None:
            logger.warning(f"Unparseable {schema.__name__} response, using defaults: {result['parsing_error']}")
            return schema()
        result = result["parsed"]

    if isinstance(result, schema):
        return result
    if result is None:
        logger.warning(f"Empty {schema.__name__} response, using defaults")
        return schema()

    try:
        return schema.model_validate(result)
    except ValidationError as e:
        logger.warning(f"Invalid {schema.__name__} response, using defaults: {e.error_count()} errors")
        return schema()
