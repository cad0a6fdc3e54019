"""MCP server for mentorlens.

Exposes mistake prediction, code history storytelling and skill tracking
to editors via the Model Context Protocol. One coordinator lives for the
whole server process, so per-user locks and the response cache are shared
by every tool call.

Usage:
    uv run python -m mentorlens.mcp_server [--db /path/to/mentorlens.db]

Configure in Claude Code (~/.claude.json):
    {
      "mcpServers": {
        "mentorlens": {
          "command": "uv",
          "args": ["run", "--directory", "/path/to/mentorlens", "mentorlens", "serve"]
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from mentorlens.activity import log_tool_call
from mentorlens.config import Config
from mentorlens.coordinator import Coordinator
from mentorlens.models import PredictionResponse, ProgressEvent, ProgressKind, SkillLevel
from mentorlens.storage.db import get_connection
from mentorlens.storage.repository import ProfileStore

logger = logging.getLogger(__name__)


def _resolve_db_path() -> Path:
    """Find the database, checking CLI args, env var, then current directory."""
    for i, arg in enumerate(sys.argv):
        if arg == "--db" and i + 1 < len(sys.argv):
            return Path(sys.argv[i + 1])

    env_db = os.getenv("MENTORLENS_DB_PATH")
    if env_db:
        return Path(env_db)

    return Path("mentorlens.db")


server = Server("mentorlens")

_coordinator: Coordinator | None = None
_config: Config | None = None


def _get_coordinator() -> tuple[Coordinator, Config]:
    global _coordinator, _config
    if _coordinator is None:
        config = Config.load()
        config.db_path = _resolve_db_path()
        for issue in config.validate():
            logger.warning(issue)
        store = ProfileStore(get_connection(config.db_path))
        _coordinator = Coordinator.from_config(config, store)
        _config = config
    return _coordinator, _config


_USER_PROPERTY = {
    "type": "string",
    "description": "User id; defaults to MENTORLENS_USER",
}


@server.list_tools()
async def list_tools() -> list[types.Tool]:
    return [
        types.Tool(
            name="predict_mistake",
            description=(
                "Predict the mistake the developer is most likely to make in the given code, "
                "with a follow-up question and the mental model behind it. Call this while "
                "a junior developer is writing code, before they run it."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Code the developer is working on"},
                    "language": {
                        "type": "string",
                        "description": "python, javascript or typescript",
                    },
                    "user_id": _USER_PROPERTY,
                },
                "required": ["code", "language"],
            },
        ),
        types.Tool(
            name="explain_history",
            description=(
                "Tell the story of how a line range came to be, from its commit history: "
                "what changed, when, and the decisions behind it."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path inside the repository"},
                    "start_line": {"type": "integer", "minimum": 1},
                    "end_line": {"type": "integer", "minimum": 1},
                    "selected_code": {"type": "string", "description": "The selected lines"},
                    "skill_level": {"type": "string", "enum": ["junior", "mid-level"]},
                },
                "required": ["path", "start_line", "end_line"],
            },
        ),
        types.Tool(
            name="analyze_skill",
            description=(
                "Analyze code samples for weak concepts, record them on the user's "
                "skill profile and return practice challenges."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "snippets": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "code": {"type": "string"},
                                "language": {"type": "string"},
                            },
                            "required": ["code", "language"],
                        },
                    },
                    "user_id": _USER_PROPERTY,
                },
                "required": ["snippets"],
            },
        ),
        types.Tool(
            name="explain_concept",
            description="Explain the mental model behind a concept, optionally using a code sample.",
            inputSchema={
                "type": "object",
                "properties": {
                    "concept_id": {"type": "string", "description": "Concept id, see list_concepts"},
                    "code": {"type": "string"},
                    "language": {"type": "string"},
                    "user_id": _USER_PROPERTY,
                },
                "required": ["concept_id"],
            },
        ),
        types.Tool(
            name="get_progress",
            description="Time saved, mastered concepts and prediction accuracy for a user.",
            inputSchema={
                "type": "object",
                "properties": {"user_id": _USER_PROPERTY},
            },
        ),
        types.Tool(
            name="post_progress",
            description=(
                "Record progress: a completed challenge, a practiced concept, or the "
                "developer's response to a prediction."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "kind": {"type": "string", "enum": [k.value for k in ProgressKind]},
                    "concept_ids": {"type": "array", "items": {"type": "string"}},
                    "prediction_id": {"type": "string"},
                    "response": {"type": "string", "enum": [r.value for r in PredictionResponse]},
                    "time_saved_minutes": {"type": "number", "minimum": 0},
                    "user_id": _USER_PROPERTY,
                },
                "required": ["kind"],
            },
        ),
        types.Tool(
            name="reset_profile",
            description="Delete a user's skill profile and progress. Safe to repeat.",
            inputSchema={
                "type": "object",
                "properties": {"user_id": _USER_PROPERTY},
            },
        ),
        types.Tool(
            name="list_concepts",
            description="List the concepts mentorlens tracks.",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    start = time.time()
    result: list[types.TextContent] = []
    error: str | None = None
    degraded = False
    try:
        text, degraded = await _dispatch_tool(name, arguments)
        result = [types.TextContent(type="text", text=text)]
        return result
    except (KeyError, ValueError) as e:
        error = str(e)
        result = [types.TextContent(type="text", text=f"Invalid arguments: {e}")]
        return result
    except Exception as e:
        error = str(e)
        logger.exception(f"Tool {name} failed")
        result = [types.TextContent(type="text", text=f"Error: {e}")]
        return result
    finally:
        duration_ms = int((time.time() - start) * 1000)
        result_text = result[0].text if result else ""
        log_tool_call(name, arguments, result_text, error, duration_ms, degraded=degraded)


async def _dispatch_tool(name: str, arguments: dict) -> tuple[str, bool]:
    """Route a tool call. Returns the response text and whether it was degraded."""
    coordinator, config = _get_coordinator()
    user_id = arguments.get("user_id") or config.user_id

    if name == "predict_mistake":
        response = await coordinator.predict(
            arguments["code"], arguments["language"], user_id=user_id
        )
        return response.to_json(), response.degraded
    elif name == "explain_history":
        response = await coordinator.storytelling(
            arguments["path"],
            int(arguments["start_line"]),
            int(arguments["end_line"]),
            selected_code=arguments.get("selected_code", ""),
            skill_level=SkillLevel(arguments.get("skill_level", "junior")),
        )
        return response.to_json(), response.degraded
    elif name == "analyze_skill":
        snippets = [(s["code"], s["language"]) for s in arguments["snippets"]]
        response = await coordinator.analyze_skill(snippets, user_id=user_id)
        return response.to_json(), response.degraded
    elif name == "explain_concept":
        response = await coordinator.explain_concept(
            arguments["concept_id"],
            user_id=user_id,
            code=arguments.get("code", ""),
            language=arguments.get("language", ""),
        )
        return response.to_json(), response.degraded
    elif name == "get_progress":
        return coordinator.get_progress(user_id).to_json(), False
    elif name == "post_progress":
        response = arguments.get("response")
        event = ProgressEvent(
            kind=ProgressKind(arguments["kind"]),
            concept_ids=list(arguments.get("concept_ids", [])),
            prediction_id=arguments.get("prediction_id", ""),
            response=PredictionResponse(response) if response else None,
            time_saved_minutes=float(arguments.get("time_saved_minutes", 0.0)),
        )
        success = await coordinator.post_progress(user_id, event)
        return json.dumps({"success": success}), False
    elif name == "reset_profile":
        success = await coordinator.reset(user_id)
        return json.dumps({"success": success}), False
    elif name == "list_concepts":
        concepts = [
            {"id": c.id, "name": c.name, "category": c.category}
            for c in coordinator.catalog.concepts
        ]
        return json.dumps({"concepts": concepts}, indent=2), False
    else:
        return f"Unknown tool: {name}", False


async def main() -> None:
    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        if _coordinator is not None:
            _coordinator.close()


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
