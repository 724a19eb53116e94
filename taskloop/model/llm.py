import os

from dotenv import load_dotenv
from typing import Any, Optional, Protocol
from langchain_openai import ChatOpenAI
from langchain_core.messages import (
    AIMessage,
    HumanMessage,
    SystemMessage,
    BaseMessage,
)
from pydantic import BaseModel, ValidationError

from taskloop.errors import InferenceError
from taskloop.utils.logger import get_logger

load_dotenv()

log = get_logger(__name__)

DEFAULT_MODEL = "openai/gpt-4o-2024-11-20"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT = 30.0


def _get_chat_llm(
    model: str = DEFAULT_MODEL,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = DEFAULT_TIMEOUT,
) -> ChatOpenAI:
    """Build the LangChain ChatOpenAI instance from the environment."""
    base_url = os.getenv("OPENAI_BASE_URL", base_url)
    api_key = os.getenv("OPENAI_API_KEY", "")

    if not api_key:
        raise ValueError("OPENAI_API_KEY environment variable is not set.")

    return ChatOpenAI(
        model=model,
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
    )


def _build_messages(prompt: str, system_prompt: Optional[str]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=prompt))
    return messages


def extract_text_content(response: AIMessage | str) -> str:
    """Flatten an AIMessage (string or content blocks) into plain text."""
    if isinstance(response, str):
        return response
    if isinstance(response.content, str):
        return response.content
    if isinstance(response.content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in response.content
        )
    return ""


async def llm_call(
    prompt: str,
    system_prompt: Optional[str] = None,
    model: str = DEFAULT_MODEL,
    timeout: float = DEFAULT_TIMEOUT,
) -> AIMessage:
    """
    Makes a plain-text call to the chat LLM.
    Args:
        prompt (str): The user prompt.
        system_prompt (str): Optional system prompt.
    Returns:
        AIMessage: The raw model response.
    """
    llm = _get_chat_llm(model=model, timeout=timeout)
    return await llm.ainvoke(_build_messages(prompt, system_prompt))


async def llm_call_with_structured_output(
    prompt: str,
    system_prompt: Optional[str] = None,
    output_schema: Optional[type] = None,
    model: str = DEFAULT_MODEL,
    timeout: float = DEFAULT_TIMEOUT,
):
    """
    Makes a call to the chat LLM and parses the reply into ``output_schema``.
    Args:
        prompt (str): The user prompt.
        system_prompt (str): Optional system prompt.
        output_schema (type): Pydantic model describing the expected JSON.
    Returns:
        Any: An ``output_schema`` instance, or a dict when the provider
             returns raw JSON.
    """
    llm = _get_chat_llm(model=model, timeout=timeout)

    llm_with_structured_output = llm.with_structured_output(
        output_schema, method="json_mode"
    )

    return await llm_with_structured_output.ainvoke(
        _build_messages(prompt, system_prompt)
    )


# ======================================================================
## Inference Client
# ======================================================================


class InferenceClient(Protocol):
    """What the task loop needs from an LLM."""

    async def complete(
        self,
        prompt: str,
        schema: Optional[type[BaseModel]] = None,
        system_prompt: Optional[str] = None,
    ) -> Any:
        """Return text, or a ``schema`` instance when a schema is given.

        Raises InferenceError on any failure.
        """
        ...


class ChatInferenceClient:
    """InferenceClient backed by ``llm_call`` / ``llm_call_with_structured_output``."""

    def __init__(self, model: str = DEFAULT_MODEL, timeout: float = DEFAULT_TIMEOUT):
        self.model = model
        self.timeout = timeout

    async def complete(
        self,
        prompt: str,
        schema: Optional[type[BaseModel]] = None,
        system_prompt: Optional[str] = None,
    ) -> Any:
        try:
            if schema is None:
                response = await llm_call(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    model=self.model,
                    timeout=self.timeout,
                )
                return extract_text_content(response)

            response = await llm_call_with_structured_output(
                prompt=prompt,
                system_prompt=system_prompt,
                output_schema=schema,
                model=self.model,
                timeout=self.timeout,
            )
        except Exception as e:
            log.warning(f"Inference call to {self.model} failed: {e}")
            raise InferenceError(str(e)) from e

        if isinstance(response, schema):
            return response
        try:
            return schema.model_validate(response)
        except ValidationError as e:
            raise InferenceError(
                f"Response does not match {schema.__name__}: {e}"
            ) from e
