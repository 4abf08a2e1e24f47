import asyncio
import logging

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from thread_analyzer_mcp.logging_setup import setup_logging
from thread_analyzer_mcp.tools_adapter import QUERIES, Result, query_tool_call, render_tool_call

logger = logging.getLogger("thread_analyzer_mcp.server")

_QUERY_PROPERTIES = {
    "path": {"type": "string", "description": "Path to thread dump text file"},
    "name_contains": {
        "type": "string",
        "description": "Only consider threads whose name contains this string",
    },
    "show_stack_traces": {"type": "boolean", "default": False},
}

_DESCRIPTIONS = {
    "detect_deadlocks": "Parses a JVM thread dump and reports cycles of threads blocking each other.",
    "blocking_tree": "Parses a JVM thread dump and reports the forest of threads blocking other threads.",
    "top_contenders": "Parses a JVM thread dump and ranks threads by the number of threads they block.",
}


def _to_content(result: Result) -> list[TextContent]:
    if not result.ok:
        raise ValueError(f"{result.error_code}: {result.error_message}")
    return [TextContent(type="text", text=result.text or "")]


async def main_async() -> None:
    setup_logging()
    server = Server("thread-analyzer-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = [
            Tool(
                name=name,
                description=_DESCRIPTIONS[name],
                inputSchema={
                    "type": "object",
                    "required": ["path"],
                    "properties": _QUERY_PROPERTIES,
                    "additionalProperties": False,
                },
            )
            for name in QUERIES
        ]
        tools.append(
            Tool(
                name="render_thread_dump",
                description="Parses a JVM thread dump and renders it back normalized, optionally in porcelain mode.",
                inputSchema={
                    "type": "object",
                    "required": ["path"],
                    "properties": {
                        "path": {"type": "string", "description": "Path to thread dump text file"},
                        "porcelain": {"type": "boolean"},
                    },
                    "additionalProperties": False,
                },
            )
        )
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        logger.debug("Tool call %s %s", name, arguments)
        if name in QUERIES:
            return _to_content(query_tool_call(
                name,
                arguments.get("path"),
                arguments.get("name_contains"),
                arguments.get("show_stack_traces", False),
            ))
        if name == "render_thread_dump":
            return _to_content(render_tool_call(arguments.get("path"), arguments.get("porcelain")))
        raise ValueError(f"Unknown tool: {name}")

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
