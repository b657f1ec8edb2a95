"""
Duplex stream contract between the session orchestrator and the model service.

- request body: an async iterable of ``{"chunk": {"bytes": <utf-8 JSON>}}``
- response: an async iterator of the same chunk shape, or of an inline fault
  entry ``{"modelStreamErrorException": {...}}`` / ``{"internalServerException": {...}}``
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Dict


class DuplexStream(ABC):
    """Interface for a duplex model-inference stream."""

    @abstractmethod
    def invoke(
        self,
        model_id: str,
        body: AsyncIterable[Dict[str, Any]],
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Open a stream whose request side is fed from ``body``.

        Args:
            model_id: Model to invoke
            body: Outbound chunks, consumed until exhausted

        Returns:
            Async iterator of inbound chunks and inline fault entries
        """
        pass
