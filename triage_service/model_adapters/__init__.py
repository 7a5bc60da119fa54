# Model Adapters Package
"""
Adapters for the remote language-model fallback.
"""

from .model_selector import FallbackResult, ModelSelector
from .api_model_adapter import FallbackError, OpenAIAdapter

__all__ = [
    "FallbackError",
    "FallbackResult",
    "ModelSelector",
    "OpenAIAdapter"
]
