import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from .blocking_tree import BlockingTree
from .config import get_settings
from .deadlocks import Deadlocks
from .errors import IllegalRuntimeStateError
from .model import Mode
from .parser import ThreadDumpParser
from .runtime import ProcessRuntime
from .threads import name_contains as name_contains_predicate
from .top_contenders import TopContenders

logger = logging.getLogger(__name__)

QUERIES = {
    "detect_deadlocks": Deadlocks,
    "blocking_tree": BlockingTree,
    "top_contenders": TopContenders,
}


@dataclass
class Result:
    ok: bool
    text: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @staticmethod
    def ok_text(payload: Dict) -> "Result":
        return Result(ok=True, text=json.dumps(payload))

    @staticmethod
    def err(code: str, message: str) -> "Result":
        return Result(ok=False, error_code=code, error_message=message)


def _check_file(path: str) -> Optional[Result]:
    if not os.path.exists(path):
        return Result.err("INVALID_PARAMS", f"File not found: {path}")
    if os.path.isdir(path):
        return Result.err("INVALID_PARAMS", f"Path is a directory: {path}")
    max_bytes = get_settings().max_file_bytes
    if os.path.getsize(path) > max_bytes:
        return Result.err("INTERNAL_ERROR", f"File too large (>{max_bytes} bytes)")
    return None


# Tool logic without MCP types so it can be exercised without the MCP runtime

def query_tool_call(
    query: str,
    path: str,
    name_contains: Optional[str] = None,
    show_stack_traces: bool = False,
) -> Result:
    if query not in QUERIES:
        return Result.err("INVALID_PARAMS", f"'query' must be one of: {'|'.join(QUERIES)}")
    if not isinstance(path, str) or not path:
        return Result.err("INVALID_PARAMS", "'path' must be a non-empty string")
    if name_contains is not None and (not isinstance(name_contains, str) or not name_contains):
        return Result.err("INVALID_PARAMS", "'name_contains' must be a non-empty string")
    if not isinstance(show_stack_traces, bool):
        return Result.err("INVALID_PARAMS", "'show_stack_traces' must be a boolean")

    try:
        error = _check_file(path)
        if error is not None:
            return error

        runtime = ThreadDumpParser().from_file(path)
        threads = runtime.threads
        if name_contains is not None:
            threads = threads.where(name_contains_predicate(name_contains))

        result = QUERIES[query](show_stack_traces).query(threads)
        payload = {
            "summary": result.summary().strip(),
            "result": str(result),
            "exit_code": result.exit_code(),
            "involved": [thread.name for thread in result.involved_threads],
        }
        return Result.ok_text(payload)
    except IllegalRuntimeStateError as e:
        return Result.err("PARSE_ERROR", str(e))
    except Exception as e:  # pragma: no cover
        logger.exception("Query %s failed for %s", query, path)
        return Result.err("INTERNAL_ERROR", f"Exception: {e}")


def deadlocks_tool_call(path: str, name_contains: Optional[str] = None, show_stack_traces: bool = False) -> Result:
    return query_tool_call("detect_deadlocks", path, name_contains, show_stack_traces)


def blocking_tree_tool_call(path: str, name_contains: Optional[str] = None, show_stack_traces: bool = False) -> Result:
    return query_tool_call("blocking_tree", path, name_contains, show_stack_traces)


def top_contenders_tool_call(path: str, name_contains: Optional[str] = None, show_stack_traces: bool = False) -> Result:
    return query_tool_call("top_contenders", path, name_contains, show_stack_traces)


def render_tool_call(path: str, porcelain: Optional[bool] = None) -> Result:
    """Re-render the dump, normalized by the parser fix-ups."""
    if not isinstance(path, str) or not path:
        return Result.err("INVALID_PARAMS", "'path' must be a non-empty string")
    if porcelain is None:
        porcelain = get_settings().porcelain
    if not isinstance(porcelain, bool):
        return Result.err("INVALID_PARAMS", "'porcelain' must be a boolean")

    try:
        error = _check_file(path)
        if error is not None:
            return error

        runtime: ProcessRuntime = ThreadDumpParser().from_file(path)
        mode = Mode.MACHINE if porcelain else Mode.HUMAN
        payload = {
            "summary": f"Threads: {len(runtime.threads)}",
            "result": runtime.render(mode),
            "exit_code": 0,
            "involved": [thread.name for thread in runtime.threads],
        }
        return Result.ok_text(payload)
    except IllegalRuntimeStateError as e:
        return Result.err("PARSE_ERROR", str(e))
    except Exception as e:  # pragma: no cover
        logger.exception("Rendering failed for %s", path)
        return Result.err("INTERNAL_ERROR", f"Exception: {e}")
