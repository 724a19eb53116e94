from taskloop.model.llm import (
    llm_call,
    llm_call_with_structured_output,
    InferenceClient,
    ChatInferenceClient,
    DEFAULT_MODEL,
)

__all__ = [
    "llm_call",
    "llm_call_with_structured_output",
    "InferenceClient",
    "ChatInferenceClient",
    "DEFAULT_MODEL",
]
