"""Example of using Roleplay State through MCP.

This demonstrates how a chat host would drive one session through the
MCP server, calling its own LLM between prepare_turn and process_response.
"""

import asyncio
import json
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


async def run_example():
    """Run example MCP interactions."""
    # Connect to the MCP server
    server_params = StdioServerParameters(
        command="roleplay-state-mcp",
        env={
            "ROLEPLAY_DB_PATH": "example_sessions.db",
            "ROLEPLAY_EMBEDDING_BACKEND": "hash",
        },
    )
    key = {"session_key": "example-chat"}

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            # Initialize connection
            await session.initialize()

            # List available tools
            tools = await session.list_tools()
            print(f"Available tools: {[t.name for t in tools.tools]}")

            # Start a session for a character
            print("\n=== Starting session ===")
            started = await session.call_tool(
                "start_session",
                {
                    **key,
                    "character": {
                        "id": "mara",
                        "name": "Mara",
                        "personality": "Wry, watchful, slow to trust",
                        "scenario": "A stranger arrives on a stormy night.",
                    },
                    "lore": [
                        {
                            "name": "Harbor Guild",
                            "content": "The Harbor Guild controls every berth on the docks.",
                            "importance": 7,
                            "keys": ["guild", "docks"],
                        },
                    ],
                    "location": {"name": "The Gilded Anchor"},
                },
            )
            print(started.content[0].text)

            # Add an NPC that may act on its own
            await session.call_tool(
                "add_npc",
                {**key, "id": "guard", "name": "Guild Guard", "autonomy": 0.8},
            )

            # Prepare a turn
            print("\n=== Preparing turn ===")
            prepared = await session.call_tool(
                "prepare_turn",
                {**key, "user_message": "*walks to the bar* Is the guild in tonight?"},
            )
            context = json.loads(prepared.content[0].text)
            print(f"Tracked actions: {[a['action_type'] for a in context['parsed_actions']]}")
            print(context["scene_prompt"])

            # The host sends context["full_prompt"] to its LLM here
            reply = (
                "Mara watches you walk to the bar and leans on the counter. "
                '"The guild is always in," she says, eyes flicking to the guard.'
            )

            # Check the reply before accepting it
            print("\n=== Validating reply ===")
            checked = await session.call_tool("validate_response", {**key, "reply": reply})
            validation = json.loads(checked.content[0].text)
            print(f"Score: {validation['score']} valid={validation['valid']}")

            if not validation["valid"]:
                guidance = await session.call_tool(
                    "regeneration_guidance", {**key, "reply": reply}
                )
                print(json.loads(guidance.content[0].text)["guidance"])

            # Fold the reply into state
            print("\n=== Processing reply ===")
            processed = await session.call_tool("process_response", {**key, "reply": reply})
            result = json.loads(processed.content[0].text)
            print(f"Resolved actions: {len(result['resolved_action_ids'])}")

            scene = await session.call_tool("get_scene", key)
            print(json.loads(scene.content[0].text)["summary"])

            stats = await session.call_tool("action_statistics", key)
            print(stats.content[0].text)

            # Persist the session for later
            saved = await session.call_tool("save_session", key)
            print(saved.content[0].text)


if __name__ == "__main__":
    asyncio.run(run_example())
