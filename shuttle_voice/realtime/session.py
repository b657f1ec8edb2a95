"""
Session State

The in-memory record behind one conversation. Owned and mutated only by the
orchestrator (``BidirectionalStreamClient``); nothing here is persisted.
"""

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from shuttle_voice.config import AgentType

from .events import EventDispatcher


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class SessionState:
    """
    State of one streaming session.

    Attributes:
        session_id: Registry key
        inference_config: Wire-form inference configuration for sessionStart
        agent_type: Variant selecting prompt and knowledge bases
        queue: Outbound events awaiting the stream, strict FIFO
        queue_signal: Set when an event is pushed
        close_signal: Set once when the session ends; terminates iteration
        handlers: Inbound event callbacks
        prompt_name: Correlation token shared by every event of the prompt
        audio_content_id: contentName of the user audio channel
        is_active: False is terminal; no further pushes are accepted
        is_prompt_start_sent: promptStart was queued
        is_audio_content_start_sent: audio contentStart was queued
        selected_user_id / selected_voice_id: per-connection overrides
        tool_use_id / tool_name / tool_use_content: the last observed tool call.
            Overwritten by each toolUse, so only one call can be in flight.
    """
    session_id: str
    inference_config: Dict[str, Any]
    agent_type: AgentType = AgentType.RETRIEVAL
    queue: Deque[Dict[str, Any]] = field(default_factory=deque)
    queue_signal: asyncio.Event = field(default_factory=asyncio.Event)
    close_signal: asyncio.Event = field(default_factory=asyncio.Event)
    prompt_name: str = field(default_factory=new_id)
    audio_content_id: str = field(default_factory=new_id)
    is_active: bool = True
    is_prompt_start_sent: bool = False
    is_audio_content_start_sent: bool = False
    selected_user_id: Optional[str] = None
    selected_voice_id: Optional[str] = None
    tool_use_id: str = ""
    tool_name: str = ""
    tool_use_content: Any = None
    handlers: EventDispatcher = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.handlers = EventDispatcher(self.session_id)

    def push(self, event: Dict[str, Any]) -> bool:
        """Append an outbound event. No-op (returns False) once inactive."""
        if not self.is_active:
            return False
        self.queue.append(event)
        self.queue_signal.set()
        return True

    def deactivate(self) -> None:
        """Mark inactive and fire the close signal. Queued events are discarded by the iterator."""
        self.is_active = False
        self.close_signal.set()

    def remember_tool_use(self, tool_use: Dict[str, Any]) -> None:
        self.tool_use_content = tool_use
        self.tool_use_id = tool_use.get("toolUseId", "")
        self.tool_name = tool_use.get("toolName", "")
