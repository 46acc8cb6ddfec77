"""MCP server for the Roleplay State engine.

Exposes a session registry through Model Context Protocol tools. stdout
carries the protocol, so logging goes to stderr.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from roleplay_state.config import EngineConfig
from roleplay_state.models import CharacterProfile, LoreEntry
from roleplay_state.registry import SessionRegistry
from roleplay_state.snapshot import (
    engine_state_from_dict,
    engine_state_to_dict,
    turn_result_to_dict,
)
from roleplay_state.store import SessionStore

logger = logging.getLogger(__name__)

_SESSION_KEY = {"type": "string", "description": "Conversation session key"}


def _tool(name: str, description: str, properties: dict | None = None, required: list[str] | None = None) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema={
            "type": "object",
            "properties": {"session_key": _SESSION_KEY, **(properties or {})},
            "required": ["session_key", *(required or [])],
        },
    )


# -------------------------------------------------------------------------
# Tool Definitions
# -------------------------------------------------------------------------

TOOLS = [
    _tool(
        "start_session",
        "Activate a session for a character, optionally with lore and a starting location",
        {
            "character": {
                "type": "object",
                "description": "Character record: id, name, description, personality, "
                "scenario, example_dialogue, overview_memory, memory_bank, recent_experiences",
            },
            "lore": {
                "type": "array",
                "items": {"type": "object"},
                "description": "Lore entries: name, content, category, importance, keys",
            },
            "location": {"type": "object", "description": "Starting location fields"},
        },
        ["character"],
    ),
    _tool(
        "prepare_turn",
        "Parse the user's message into tracked actions and build the instruction prompt",
        {
            "user_message": {"type": "string"},
            "conversation": {
                "type": "string",
                "description": "Recent conversation text used for lore relevance",
            },
            "custom_directives": {"type": "string"},
        },
        ["user_message"],
    ),
    _tool(
        "validate_response",
        "Score a generated reply against the prepared turn without changing state",
        {"reply": {"type": "string"}},
        ["reply"],
    ),
    _tool(
        "process_response",
        "Fold an accepted reply into scene, action and memory state",
        {"reply": {"type": "string"}},
        ["reply"],
    ),
    _tool(
        "regeneration_guidance",
        "Validate a reply and return retry instructions if it failed",
        {"reply": {"type": "string"}},
        ["reply"],
    ),
    _tool(
        "new_scene",
        "Start a new scene, clearing pending actions and short-term memory",
        {
            "location": {"type": "object"},
            "preserve_characters": {"type": "boolean", "default": True},
            "preserve_npcs": {"type": "boolean", "default": False},
        },
    ),
    _tool("get_scene", "Get the current scene state and a one-line summary"),
    _tool(
        "update_scene",
        "Apply a partial scene update (location, characters, npcs, environment, "
        "narrative, flags, recent_event)",
        {"updates": {"type": "object"}},
        ["updates"],
    ),
    _tool(
        "add_npc",
        "Add or replace an NPC in the current scene",
        {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "autonomy": {"type": "number", "description": "0..1"},
            "motivations": {"type": "array", "items": {"type": "string"}},
            "perception": {"type": "string"},
            "emotional_threshold": {"type": "number", "description": "0..10"},
        },
        ["id", "name"],
    ),
    _tool("get_pending_actions", "List unresolved user actions"),
    _tool(
        "force_resolve_actions",
        "Mark every pending action resolved",
        {"reason": {"type": "string"}},
        ["reason"],
    ),
    _tool("action_statistics", "Action ledger statistics"),
    _tool("export_state", "Export the full engine snapshot as JSON"),
    _tool(
        "import_state",
        "Replace the session with a previously exported snapshot",
        {"state": {"type": "object"}},
        ["state"],
    ),
    _tool("save_session", "Persist the session snapshot to the session store"),
    _tool("load_session", "Restore the session from the session store"),
    _tool("reset_session", "Reset the session to uninitialized; long-term memory is kept"),
]

_NPC_FIELDS = ("autonomy", "motivations", "perception", "emotional_threshold")


def _profile_from_dict(data: dict) -> CharacterProfile:
    names = {f.name for f in dataclasses.fields(CharacterProfile)}
    return CharacterProfile(**{k: v for k, v in data.items() if k in names})


def _lore_from_dicts(entries: list[dict]) -> list[LoreEntry]:
    names = {f.name for f in dataclasses.fields(LoreEntry)}
    return [LoreEntry(**{k: v for k, v in e.items() if k in names}) for e in entries]


def dispatch(registry: SessionRegistry, name: str, arguments: dict[str, Any]) -> Any:
    """Run one tool call and return a JSON-serializable result."""
    key = arguments["session_key"]

    if name == "load_session":
        engine = registry.restore(key)
        if engine is None:
            return f"No saved session: {key}"
        return {"session_id": engine.session_id, "turn_count": engine.turn_count}

    if name == "save_session":
        registry.save(key)
        return f"Saved session: {key}"

    create = name in ("start_session", "import_state")
    with registry.session(key, create=create) as engine:
        if name == "start_session":
            engine.set_character(_profile_from_dict(arguments["character"]))
            if arguments.get("lore"):
                engine.set_lore(_lore_from_dicts(arguments["lore"]))
            if arguments.get("location"):
                engine.update_location(**arguments["location"])
            return {"session_id": engine.session_id, "scene_id": engine.scene.scene_id}

        elif name == "prepare_turn":
            context = engine.prepare_turn(
                arguments["user_message"],
                conversation=arguments.get("conversation"),
                custom_directives=arguments.get("custom_directives"),
            )
            return dataclasses.asdict(context)

        elif name == "validate_response":
            return dataclasses.asdict(engine.validate_response(arguments["reply"]))

        elif name == "process_response":
            return turn_result_to_dict(engine.process_response(arguments["reply"]))

        elif name == "regeneration_guidance":
            validation = engine.validate_response(arguments["reply"])
            return {
                "score": validation.score,
                "guidance": engine.regeneration_guidance(validation),
            }

        elif name == "new_scene":
            scene_id = engine.new_scene(
                location=arguments.get("location"),
                preserve_characters=arguments.get("preserve_characters", True),
                preserve_npcs=arguments.get("preserve_npcs", False),
            )
            return {"scene_id": scene_id}

        elif name == "get_scene":
            return {
                "summary": engine.scene.summary(),
                "scene": dataclasses.asdict(engine.get_scene_state()),
            }

        elif name == "update_scene":
            engine.apply_scene_update(arguments["updates"])
            return engine.scene.summary()

        elif name == "add_npc":
            fields = {k: arguments[k] for k in _NPC_FIELDS if k in arguments}
            engine.add_npc(arguments["id"], arguments["name"], **fields)
            return f"Added NPC: {arguments['id']}"

        elif name == "get_pending_actions":
            return [dataclasses.asdict(a) for a in engine.get_pending_actions()]

        elif name == "force_resolve_actions":
            return {"resolved": engine.force_resolve_all_actions(arguments["reason"])}

        elif name == "action_statistics":
            return engine.action_statistics()

        elif name == "export_state":
            return engine_state_to_dict(engine.export_state())

        elif name == "import_state":
            engine.import_state(engine_state_from_dict(arguments["state"]))
            return {"session_id": engine.session_id, "turn_count": engine.turn_count}

        elif name == "reset_session":
            engine.reset()
            return f"Reset session: {key}"

    raise ValueError(f"Unknown tool: {name}")


def create_server(registry: SessionRegistry) -> Server:
    """Build an MCP server bound to a registry."""
    server = Server("roleplay_state")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        try:
            result = dispatch(registry, name, arguments or {})
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return [TextContent(type="text", text=f"Error: {e}")]

        text = result if isinstance(result, str) else json.dumps(result, indent=2)
        return [TextContent(type="text", text=text)]

    return server


def registry_from_env() -> SessionRegistry:
    """Build a registry from ROLEPLAY_* environment variables."""
    db_path = os.getenv("ROLEPLAY_DB_PATH", "roleplay_sessions.db")
    return SessionRegistry(config=EngineConfig.from_env(), store=SessionStore(db_path))


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------


async def main():
    """Run the MCP server."""
    logging.basicConfig(
        level=os.getenv("ROLEPLAY_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    registry = registry_from_env()
    server = create_server(registry)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        if registry.store is not None:
            registry.store.close()


def run() -> None:
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run()
