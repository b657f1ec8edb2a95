"""Short user-facing strings sent over the voice WebSocket.

The streaming core never talks to end users directly; the connection adapter
maps failures and acknowledgements to these messages.
"""

from __future__ import annotations

_MESSAGES: dict[str, str] = {
    "error.session_init_failed": "Failed to initialize voice session.",
    "error.audio_stream": "Audio stream error.",
    "error.invalid_payload": "Payload must be a JSON object with a 'type' field.",
    "error.unsupported_message": "Unsupported message type.",
    "status.voice_selected": "Voice selected: {voice_id}",
    "status.user_selected": "User selected: {user_id}",
    "status.agent_selected": "Agent selected: {agent_type}",
    "status.session_closed": "Voice session closed.",
}


def msg(key: str, **params: object) -> str:
    """Return a message by key, formatted with params, or the key itself if not found."""
    template = _MESSAGES.get(key)
    if template is None:
        return key
    return template.format(**params) if params else template
