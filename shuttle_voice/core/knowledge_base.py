"""
Knowledge Base Module

Client for Amazon Bedrock Knowledge Bases used to answer model tool calls.

Architecture:
- KnowledgeBase: Abstract retrieval interface (what the tool bridge depends on)
- BedrockKnowledgeBaseClient: boto3 ``bedrock-agent-runtime`` implementation
- RetrievalResult: One retrieved passage with normalized metadata

Usage:
    from shuttle_voice.core.knowledge_base import BedrockKnowledgeBaseClient

    kb = BedrockKnowledgeBaseClient()
    results = await kb.aretrieve("H8REU8WUQ9", "refund policy", number_of_results=3)
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import boto3

from shuttle_voice.config import settings
from shuttle_voice.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RetrievalResult:
    """
    A single passage returned by a knowledge base.

    Attributes:
        content: Passage text
        source: Short name of the originating document
        location: Full URI of the document, when known
        title: Document title from metadata
        excerpt: Excerpt from metadata
        score: Relevance score (higher = more relevant)
    """
    content: str
    source: str = "Unknown source"
    location: Optional[str] = None
    title: str = ""
    excerpt: str = ""
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Shape sent back to the model inside a tool result."""
        return {
            "content": self.content,
            "metadata": {
                "source": self.source,
                "location": self.location,
                "title": self.title,
                "excerpt": self.excerpt,
            },
            "score": self.score,
        }


class KnowledgeBase(ABC):
    """Interface for knowledge-source lookups."""

    @abstractmethod
    def retrieve(
        self,
        knowledge_base_id: str,
        query: str,
        number_of_results: int = 5,
        retrieval_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievalResult]:
        """Return passages relevant to query. Raises on transport/service errors."""
        pass

    async def aretrieve(
        self,
        knowledge_base_id: str,
        query: str,
        number_of_results: int = 5,
        retrieval_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievalResult]:
        """Run ``retrieve`` in the default executor so the event loop keeps serving streams."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.retrieve(knowledge_base_id, query, number_of_results, retrieval_filter),
        )


def _parse_location(location: Dict[str, Any]) -> tuple:
    """Map a Bedrock result location to (source, uri)."""
    if "s3Location" in location:
        uri = location["s3Location"].get("uri")
        source = uri.rsplit("/", 1)[-1] if uri else ""
        return source or "Unknown S3 file", uri
    if "confluenceLocation" in location:
        url = location["confluenceLocation"].get("url")
        return url or "Unknown Confluence page", url
    if "webLocation" in location:
        web = location["webLocation"] or {}
        return "Web source", web.get("url") or web.get("uri")
    return "Unknown source", None


class BedrockKnowledgeBaseClient(KnowledgeBase):
    """
    Bedrock Knowledge Base retrieval via boto3.

    The boto3 client is created lazily on first use so constructing the
    orchestrator never touches AWS.
    """

    def __init__(self, region: Optional[str] = None, client: Any = None):
        self._region = region or settings.aws.kb_region
        self._client = client

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("bedrock-agent-runtime", region_name=self._region)
            logger.debug(f"Created bedrock-agent-runtime client in {self._region}")
        return self._client

    def retrieve(
        self,
        knowledge_base_id: str,
        query: str,
        number_of_results: int = 5,
        retrieval_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievalResult]:
        """
        Query one knowledge base.

        Args:
            knowledge_base_id: Bedrock knowledge base id
            query: Free-text query
            number_of_results: Maximum passages to return
            retrieval_filter: Optional metadata filter

        Returns:
            List of RetrievalResult (empty when nothing matched)
        """
        vector_config: Dict[str, Any] = {"numberOfResults": number_of_results}
        if retrieval_filter:
            vector_config["filter"] = retrieval_filter

        try:
            response = self._ensure_client().retrieve(
                knowledgeBaseId=knowledge_base_id,
                retrievalQuery={"text": query},
                retrievalConfiguration={"vectorSearchConfiguration": vector_config},
            )
        except Exception as e:
            logger.error(f"Error retrieving from knowledge base {knowledge_base_id}: {e}")
            raise

        results: List[RetrievalResult] = []
        for item in response.get("retrievalResults") or []:
            source, location = _parse_location(item.get("location") or {})
            metadata = item.get("metadata") or {}
            title = metadata.get("title")
            excerpt = metadata.get("excerpt")
            results.append(RetrievalResult(
                content=(item.get("content") or {}).get("text", ""),
                source=source,
                location=location,
                title=title if isinstance(title, str) else "",
                excerpt=excerpt if isinstance(excerpt, str) else "",
                score=float(item.get("score") or 0.0),
            ))

        logger.debug(f"Knowledge base {knowledge_base_id} returned {len(results)} results")
        return results
