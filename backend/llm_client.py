from __future__ import annotations
import logging
from typing import Dict, List, Optional

import openai
from openai import OpenAI

from errors import CollaboratorError, ConfigError

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def get_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: float = 60.0,
    max_retries: int = 2,
) -> OpenAI:
    global _client
    if _client is None:
        if not api_key:
            raise ConfigError("OPENAI_API_KEY environment variable is required")
        _client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
    return _client


def client_from_config(config) -> OpenAI:
    return get_client(
        api_key=config.OPENAI_API_KEY,
        base_url=config.OPENAI_BASE_URL,
        timeout=config.OPENAI_TIMEOUT,
        max_retries=config.OPENAI_MAX_RETRIES,
    )


def reset_client() -> None:
    global _client
    _client = None


def generate_text(
    messages: List[Dict[str, str]],
    model: str = "gpt-3.5-turbo",
    temperature: float = 0.7,
    max_tokens: int = 500,
    client: Optional[OpenAI] = None,
) -> str:
    """Single chat completion call; provider failures become CollaboratorError.

    Rate limiting maps to status 429, everything else (auth, timeouts,
    connection problems, malformed responses) to 500.
    """
    client = client or get_client()
    try:
        completion = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.RateLimitError as e:
        logger.warning("Completion service rate limited the request: %s", e)
        raise CollaboratorError(
            "The AI service is receiving too many requests right now, please try again shortly.",
            status_code=429,
            detail=str(e),
        ) from e
    except openai.AuthenticationError as e:
        logger.error("Completion service rejected the API key: %s", e)
        raise CollaboratorError("Authentication with the AI service failed", detail=str(e)) from e
    except openai.APITimeoutError as e:
        logger.error("Completion service timed out: %s", e)
        raise CollaboratorError("The AI service took too long to respond", detail=str(e)) from e
    except openai.APIConnectionError as e:
        logger.error("Could not reach the completion service: %s", e)
        raise CollaboratorError("Could not reach the AI service", detail=str(e)) from e
    except openai.APIError as e:
        logger.error("Completion service error: %s", e)
        raise CollaboratorError("An error occurred while generating the answer", detail=str(e)) from e

    choices = getattr(completion, "choices", None) or []
    content = choices[0].message.content if choices and choices[0].message else None
    if not content:
        logger.error("Completion service returned no content (choices=%d)", len(choices))
        raise CollaboratorError(
            "An error occurred while generating the answer",
            detail="Malformed response from the AI service: no message content",
        )
    logger.debug("Completion response snippet: %s...", content[:200])
    return content
