"""
Tool-Call Bridge

Resolves model-issued tool calls against the knowledge bases. Only
``retrieve_kb_docs`` is supported; any other name is a protocol mismatch and
raises ``UnsupportedToolError``.

Failures that the model can reason about (unparseable input, no knowledge
bases configured, a knowledge base erroring) come back as structured values
so they can be sent to the model as an ordinary tool result.

Usage:
    bridge = ToolCallBridge()
    result = await bridge.resolve("retrieve_kb_docs", tool_use, AgentType.BOOKING)
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from shuttle_voice.config import AgentType, KnowledgeBaseConfig, settings
from shuttle_voice.core.knowledge_base import (
    BedrockKnowledgeBaseClient,
    KnowledgeBase,
    RetrievalResult,
)
from shuttle_voice.logger import get_logger

from .protocol import KNOWLEDGE_BASE_TOOL_NAME

logger = get_logger(__name__)


class UnsupportedToolError(ValueError):
    """The model asked for a tool this bridge cannot serve."""


@dataclass
class ToolQuery:
    """Parsed input of a knowledge-base tool call."""
    query: str
    max_results: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "maxResults": self.max_results}


def _coerce_max_results(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _from_mapping(data: Any) -> Optional[ToolQuery]:
    if not isinstance(data, dict):
        return None
    query = data.get("query")
    if not isinstance(query, str) or not query.strip():
        return None
    return ToolQuery(query=query, max_results=_coerce_max_results(data.get("maxResults")))


def parse_tool_use_content(tool_use: Any) -> Optional[ToolQuery]:
    """
    Extract ``{query, maxResults}`` from a toolUse payload.

    Accepted shapes:
    1. ``{"content": "<json string>"}``
    2. ``{"input": {"json": {...}}}``
    3. ``{"input": "<json string>"}``
    4. ``{"query": ..., "maxResults": ...}`` (also nested as ``{"input": {...}}``)

    Returns:
        ToolQuery, or None when no shape matches or the JSON is malformed
    """
    if not isinstance(tool_use, dict):
        return None

    try:
        content = tool_use.get("content")
        if isinstance(content, str):
            return _from_mapping(json.loads(content))

        tool_input = tool_use.get("input")
        if isinstance(tool_input, dict) and isinstance(tool_input.get("json"), dict):
            return _from_mapping(tool_input["json"])

        if isinstance(tool_input, str):
            return _from_mapping(json.loads(tool_input))

        if "query" in tool_use:
            return _from_mapping(tool_use)

        if isinstance(tool_input, dict):
            return _from_mapping(tool_input)

    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"Failed to parse tool use content: {e}")

    return None


class ToolCallBridge:
    """
    Knowledge-base lookups for the ``retrieve_kb_docs`` tool.

    Each agent variant searches its own set of knowledge bases. All of them are
    queried concurrently; one failing does not discard the others.
    """

    def __init__(
        self,
        knowledge_base: Optional[KnowledgeBase] = None,
        kb_config: Optional[KnowledgeBaseConfig] = None,
    ):
        self._knowledge_base = knowledge_base or BedrockKnowledgeBaseClient()
        self._config = kb_config or settings.knowledge_base

    async def resolve(
        self,
        tool_name: str,
        tool_use_content: Any,
        agent_type: AgentType = AgentType.RETRIEVAL,
    ) -> Dict[str, Any]:
        """
        Resolve one tool call.

        Raises:
            UnsupportedToolError: tool_name is not the knowledge-base tool
        """
        tool = (tool_name or "").lower()
        if tool != KNOWLEDGE_BASE_TOOL_NAME:
            logger.warning(f"Tool {tool} not supported")
            raise UnsupportedToolError(f"Tool {tool} not supported")

        parsed = parse_tool_use_content(tool_use_content)
        if parsed is None:
            logger.warning(f"Unparseable input for {tool}: {tool_use_content!r}")
            return {
                "error": "Could not parse tool input",
                "toolName": tool,
                "expected": {"query": "string", "maxResults": "number (optional)"},
            }

        logger.info(f"Retrieving knowledge base documents for '{parsed.query[:50]}'")
        return await self.query_knowledge_bases(parsed.query, parsed.max_results, agent_type)

    async def query_knowledge_bases(
        self,
        query: str,
        max_results: Optional[int],
        agent_type: AgentType,
    ) -> Dict[str, Any]:
        kb_ids = self._config.ids_for(agent_type)
        if not kb_ids:
            logger.warning(f"No knowledge base ids configured for agent type {agent_type.value}")
            return {
                "agentType": agent_type.value,
                "error": "No KB IDs configured",
                "knowledgeBasesQueried": [],
                "totalResults": 0,
                "results": [],
            }

        number_of_results = max_results or self._config.default_max_results
        logger.info(
            f"Searching {len(kb_ids)} knowledge base(s) for '{query[:50]}' "
            f"(agentType: {agent_type.value})"
        )

        batches = await asyncio.gather(
            *(self._retrieve_one(kb_id, query, number_of_results) for kb_id in kb_ids)
        )
        merged = [result.to_dict() for batch in batches if batch for result in batch]

        return {
            "agentType": agent_type.value,
            "knowledgeBasesQueried": kb_ids,
            "totalResults": len(merged),
            "results": merged,
        }

    async def _retrieve_one(
        self,
        kb_id: str,
        query: str,
        number_of_results: int,
    ) -> Optional[List[RetrievalResult]]:
        try:
            results = await self._knowledge_base.aretrieve(kb_id, query, number_of_results)
            logger.debug(f"Knowledge base {kb_id} returned {len(results)} results")
            return results
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error retrieving from knowledge base {kb_id}: {e}")
            return None
