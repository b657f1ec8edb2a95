"""
Core Module Package

External collaborators of the streaming core:
- Knowledge Base: passage retrieval for model tool calls
- Duplex Stream: the model-inference transport contract

The Bedrock transport lives in ``shuttle_voice.core.bedrock_stream`` and is
imported lazily by the orchestrator, since its SDK is only needed at runtime.
"""

from shuttle_voice.core.duplex import DuplexStream
from shuttle_voice.core.knowledge_base import (
    BedrockKnowledgeBaseClient,
    KnowledgeBase,
    RetrievalResult,
)

__all__ = [
    "DuplexStream",
    "KnowledgeBase",
    "BedrockKnowledgeBaseClient",
    "RetrievalResult",
]
