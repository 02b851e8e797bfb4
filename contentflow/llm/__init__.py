from .client import (
    GENERATION_PARAMS,
    SYSTEM_MESSAGE,
    LLMClient,
    LLMClientConfigError,
    LLMGenerationParams,
)

__all__ = [
    "GENERATION_PARAMS",
    "SYSTEM_MESSAGE",
    "LLMClient",
    "LLMClientConfigError",
    "LLMGenerationParams",
]
