"""
Outbound Protocol Events

Builders for every event sent on the duplex stream. Each returns the JSON-ready
envelope ``{"event": {<kind>: {...}}}``; the session queue serializes it.

Event kinds, in the order a conversation normally emits them:
- sessionStart (inference configuration)
- promptStart (output modalities + the single knowledge-base tool)
- contentStart / textInput / contentEnd (system prompt, role SYSTEM)
- contentStart (AUDIO, role USER) then audioInput chunks
- contentStart (TOOL) / toolResult / contentEnd (tool answers)
- contentEnd (audio), promptEnd, sessionEnd
"""

import json
from typing import Any, Dict, Optional

Event = Dict[str, Any]

KNOWLEDGE_BASE_TOOL_NAME = "retrieve_kb_docs"

KNOWLEDGE_BASE_TOOL_DESCRIPTION = (
    "Retrieves relevant documents from the shuttle knowledge bases: company "
    "policies, booking instructions, FAQs and historical trip pricing records."
)

KNOWLEDGE_BASE_TOOL_SCHEMA = json.dumps({
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The user's question related to content stored in the knowledge base",
        },
        "maxResults": {
            "type": "number",
            "description": "Optional maximum number of results to retrieve",
            "minimum": 1,
            "maximum": 20,
        },
    },
    "required": ["query"],
})

DEFAULT_TEXT_CONFIGURATION: Dict[str, Any] = {"mediaType": "text/plain"}

DEFAULT_AUDIO_INPUT_CONFIGURATION: Dict[str, Any] = {
    "audioType": "SPEECH",
    "encoding": "base64",
    "mediaType": "audio/lpcm",
    "sampleRateHertz": 24000,
    "sampleSizeBits": 16,
    "channelCount": 1,
}

DEFAULT_AUDIO_OUTPUT_CONFIGURATION: Dict[str, Any] = {
    **DEFAULT_AUDIO_INPUT_CONFIGURATION,
    "sampleRateHertz": 24000,
    "voiceId": "tiffany",
}


def session_start(inference_config: Dict[str, Any]) -> Event:
    return {"event": {"sessionStart": {"inferenceConfiguration": inference_config}}}


def prompt_start(prompt_name: str, voice_id: Optional[str] = None) -> Event:
    """
    Declare output modalities and the one tool the model may call.

    toolChoice pins the knowledge-base tool, so any other tool name coming
    back from the model is a protocol mismatch.
    """
    audio_output = dict(DEFAULT_AUDIO_OUTPUT_CONFIGURATION)
    if voice_id:
        audio_output["voiceId"] = voice_id

    return {
        "event": {
            "promptStart": {
                "promptName": prompt_name,
                "textOutputConfiguration": {"mediaType": "text/plain"},
                "audioOutputConfiguration": audio_output,
                "toolUseOutputConfiguration": {"mediaType": "application/json"},
                "toolConfiguration": {
                    "toolChoice": {"tool": {"name": KNOWLEDGE_BASE_TOOL_NAME}},
                    "tools": [
                        {
                            "toolSpec": {
                                "name": KNOWLEDGE_BASE_TOOL_NAME,
                                "description": KNOWLEDGE_BASE_TOOL_DESCRIPTION,
                                "inputSchema": {"json": KNOWLEDGE_BASE_TOOL_SCHEMA},
                            }
                        }
                    ],
                },
            }
        }
    }


def text_content_start(
    prompt_name: str,
    content_name: str,
    role: str = "SYSTEM",
    text_config: Optional[Dict[str, Any]] = None,
) -> Event:
    return {
        "event": {
            "contentStart": {
                "promptName": prompt_name,
                "contentName": content_name,
                "type": "TEXT",
                "interactive": True,
                "role": role,
                "textInputConfiguration": text_config or DEFAULT_TEXT_CONFIGURATION,
            }
        }
    }


def text_input(prompt_name: str, content_name: str, content: str) -> Event:
    return {
        "event": {
            "textInput": {
                "promptName": prompt_name,
                "contentName": content_name,
                "content": content,
            }
        }
    }


def audio_content_start(
    prompt_name: str,
    content_name: str,
    audio_config: Optional[Dict[str, Any]] = None,
) -> Event:
    return {
        "event": {
            "contentStart": {
                "promptName": prompt_name,
                "contentName": content_name,
                "type": "AUDIO",
                "interactive": True,
                "role": "USER",
                "audioInputConfiguration": audio_config or DEFAULT_AUDIO_INPUT_CONFIGURATION,
            }
        }
    }


def audio_input(prompt_name: str, content_name: str, content_b64: str) -> Event:
    return {
        "event": {
            "audioInput": {
                "promptName": prompt_name,
                "contentName": content_name,
                "content": content_b64,
            }
        }
    }


def tool_content_start(prompt_name: str, content_name: str, tool_use_id: str) -> Event:
    return {
        "event": {
            "contentStart": {
                "promptName": prompt_name,
                "contentName": content_name,
                "interactive": False,
                "type": "TOOL",
                "role": "TOOL",
                "toolResultInputConfiguration": {
                    "toolUseId": tool_use_id,
                    "type": "TEXT",
                    "textInputConfiguration": {"mediaType": "text/plain"},
                },
            }
        }
    }


def tool_result(prompt_name: str, content_name: str, content: str) -> Event:
    return {
        "event": {
            "toolResult": {
                "promptName": prompt_name,
                "contentName": content_name,
                "content": content,
            }
        }
    }


def content_end(prompt_name: str, content_name: str) -> Event:
    return {"event": {"contentEnd": {"promptName": prompt_name, "contentName": content_name}}}


def prompt_end(prompt_name: str) -> Event:
    return {"event": {"promptEnd": {"promptName": prompt_name}}}


def session_end() -> Event:
    return {"event": {"sessionEnd": {}}}
