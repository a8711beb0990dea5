"""Tool definitions (JSON schemas) advertised by tools/list."""

from __future__ import annotations

from typing import Any

_ACTION_KINDS = ["SCRAPE", "CLICK", "TYPE", "SCROLL", "WAIT", "HIGHLIGHT", "SUMMARIZE_SCOPE", "FINISH"]

_SCOPE_PATH = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Scope path from a previous result (scopePath) to search only inside that scope",
}

_DESCRIPTOR_PROPERTIES: dict[str, Any] = {
    "actionKind": {"type": "string", "enum": _ACTION_KINDS},
    "text": {"type": "string", "description": "Visible label, placeholder or accessible name of the target"},
    "selector": {"type": "string", "description": "CSS selector (fallback strategy)"},
    "value": {"type": "string", "description": "Text to enter (TYPE)"},
    "direction": {"type": "string", "enum": ["UP", "DOWN"]},
    "durationMs": {"type": "integer", "minimum": 0, "description": "Delay for WAIT (default 1000)"},
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "act",
        "description": (
            "Resolve a target by visible text/attributes across shadow roots and same-origin frames, "
            "then perform one action. Returns {success, strategy, confidence, error?, data?, scopePath?}."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                **_DESCRIPTOR_PROPERTIES,
                "within": _SCOPE_PATH,
                "waitTimeoutMs": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Poll for the target to appear before acting",
                },
                "waitForEnabledMs": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Poll until the target is no longer disabled before acting",
                },
            },
            "required": ["actionKind"],
        },
    },
    {
        "name": "summarize",
        "description": "Bounded digest of a scope: title, headings, buttons, links, inputs, visible text.",
        "inputSchema": {"type": "object", "properties": {"within": _SCOPE_PATH}},
    },
    {
        "name": "run",
        "description": (
            "Run several actions in order (max 20). Stops on the first failure or FINISH unless "
            "stopOnFailure=false. Accepts steps as objects or as an ACTION:/TEXT:/VALUE: script."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "steps": {
                    "type": "array",
                    "items": {"type": "object", "properties": _DESCRIPTOR_PROPERTIES, "required": ["actionKind"]},
                },
                "script": {
                    "type": "string",
                    "description": "Blocks of ACTION:/TEXT:/VALUE:/TARGET:/DIRECTION: lines separated by blank lines",
                },
                "stopOnFailure": {"type": "boolean", "default": True},
                "maxSteps": {"type": "integer", "minimum": 1, "maximum": 20},
            },
        },
    },
    {
        "name": "emergency_stop",
        "description": "Halt switch: activate/deactivate the emergency stop, or read status/history.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["activate", "deactivate", "status", "history", "clear_history"],
                },
                "limit": {"type": "integer", "minimum": 1},
            },
            "required": ["action"],
        },
    },
]
