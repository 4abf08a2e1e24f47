"""Parse thread dumps produced by jstack (or compatible tools) into a ProcessRuntime.

jstack output is not always self-consistent: lock annotations are sampled
independently from the thread state, so the parser applies a number of
fix-ups before the thread gets into the model. Each fix-up is logged.
"""

import logging
import re
from functools import lru_cache
from typing import BinaryIO, List, Optional, TextIO, Tuple, Union

from .config import get_settings
from .errors import ThreadDumpParseError, UnrecognizedChunkError
from .model import WAIT_FRAME, Monitor, StackFrame, StackTrace, ThreadLock, ThreadStatus, NATIVE_LINE, UNKNOWN_LINE
from .runtime import ProcessRuntime
from .threads import ThreadBuilder

logger = logging.getLogger(__name__)

NL = r"(?:\r\n|\n)"
LOCK_SUBPATTERN = r"<(?:0x)?(\w+)> \(a ([^\)]+)\)"

# Blank line not followed by an indented one, or a line starting a new thread.
# jstack omits the blank lines between threads in the deadlock report.
THREAD_DELIMITER = re.compile(NL + r"(?:" + NL + r"(?!\s)|(?=\"))")
LINE_DELIMITER = re.compile(NL)
THREAD_HEADER = re.compile(
    r'^"([^\r\n]*)" ([^\r\n]+)(?:' + NL + r'\s+java\.lang\.Thread\.State: ([^\r\n]+)(?:' + NL + r"(.+))?)?",
    re.DOTALL,
)
# Module name and version are dropped: java.lang.Thread.sleep(java.base@9-ea/Native Method)
STACK_TRACE_ELEMENT_LINE = re.compile(r" *at (\S+)\.(\S+)\((?:.+/)?([^:]+?)(:\d+)?\)")
INDENTED_FRAME_LINE = re.compile(r"(?:  )+at .*")
ACQUIRED_LINE = re.compile(r"- locked " + LOCK_SUBPATTERN)
# OpenJDK puts an extra space after 'parking to wait for'
WAITING_ON_LINE = re.compile(r"- (?:waiting on|parking to wait for ?) " + LOCK_SUBPATTERN)
WAITING_TO_LOCK_LINE = re.compile(r"- waiting to (?:lock|re-lock in wait\(\)) " + LOCK_SUBPATTERN)
OWNABLE_SYNCHRONIZER_LINE = re.compile(r"- " + LOCK_SUBPATTERN)

DUMP_TERMINATORS = ("JNI global references", "JNI global refs")

_SIGNED_64_LIMIT = 1 << 63
_UNSIGNED_64_MASK = (1 << 64) - 1


def to_signed_64(value: int) -> int:
    value &= _UNSIGNED_64_MASK
    return value - (1 << 64) if value >= _SIGNED_64_LIMIT else value


def parse_long(value: str) -> int:
    """Parse hex id with optional 0x prefix, wrapping to signed 64-bit.

    Ids do not always fit into positive long range, 0xffffffffffffffff is -1.
    """
    if value.startswith("0x"):
        value = value[2:]
    return to_signed_64(int(value, 16))


def parse_nid(value: str) -> int:
    """Native id is hex in jstack output and decimal in human readable rendering."""
    if value.startswith("0x"):
        return parse_long(value)
    return to_signed_64(int(value, 10))


@lru_cache(maxsize=4096)
def parse_frame(line: str) -> Optional[StackFrame]:
    """Stack frame of a single line, None if the line is not a frame.

    Cached as class loading makes the same frames repeat a lot.
    """
    if not line.startswith("\tat ") and not INDENTED_FRAME_LINE.fullmatch(line):
        return None

    match = STACK_TRACE_ELEMENT_LINE.search(line)
    if match is None:
        return None

    source_file: Optional[str] = match.group(3)
    source_line = int(match.group(4)[1:]) if match.group(4) is not None else UNKNOWN_LINE

    if source_line == UNKNOWN_LINE and source_file == "Native Method":
        source_file = None
        source_line = NATIVE_LINE
    elif source_file == "Unknown Source":
        source_file = None

    return StackFrame(match.group(1), match.group(2), source_file, source_line)


class ThreadDumpParser:
    """Create ProcessRuntime from a thread dump.

    Unrecognized chunks are logged and skipped unless ``fail_on_errors`` is set,
    in which case they are fatal and fix-ups are logged as warnings.
    """

    def __init__(self, fail_on_errors: Optional[bool] = None):
        if fail_on_errors is None:
            fail_on_errors = get_settings().fail_on_errors
        self.fail_on_errors = fail_on_errors

    def from_file(self, path) -> ProcessRuntime:
        with open(path, "rb") as f:
            return self.from_stream(f)

    def from_stream(self, stream: Union[BinaryIO, TextIO]) -> ProcessRuntime:
        data = stream.read()
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        return self.from_string(data)

    def from_string(self, text: str) -> ProcessRuntime:
        builders, header = self.parse(text)
        if not builders:
            raise ThreadDumpParseError("No threads found in threaddump")

        logger.debug("Parsed %d threads", len(builders))
        return ProcessRuntime(builders, header)

    def parse(self, text: str) -> Tuple[List[ThreadBuilder], List[str]]:
        """Split dump into thread builders and header lines."""
        builders: List[ThreadBuilder] = []
        header: List[str] = []

        for chunk in THREAD_DELIMITER.split(text):
            if not chunk.strip():
                continue

            if chunk.startswith(DUMP_TERMINATORS):
                # Nothing of interest follows, including the deadlock report spread over several chunks
                break

            builder = self._thread(chunk)
            if builder is not None:
                builders.append(builder)
                continue

            # Java 9+
            if chunk.startswith("Threads class SMR info:"):
                continue

            if not builders:
                header.extend(LINE_DELIMITER.split(chunk.rstrip("\r\n")))
                continue

            if self.fail_on_errors:
                raise UnrecognizedChunkError("Unrecognized chunk", chunk)
            logger.warning("Skipping unrecognized chunk: >>>%s<<<", chunk)

        return builders, header

    def _thread(self, chunk: str) -> Optional[ThreadBuilder]:
        match = THREAD_HEADER.match(chunk)
        if match is None:
            return None

        builder = ThreadBuilder(name=match.group(1))
        self._init_header(builder, match.group(2), chunk)

        status = match.group(3)
        if status is not None:
            try:
                builder.status = ThreadStatus.from_string(status)
            except ValueError as ex:
                raise ThreadDumpParseError(str(ex), chunk) from ex

        self._init_stack_trace(builder, match.group(4) or "", chunk)
        return builder

    def _init_header(self, builder: ThreadBuilder, attrs: str, chunk: str) -> None:
        try:
            for token in attrs.split(" "):
                if token == "daemon":
                    builder.daemon = True
                elif token.startswith("prio="):
                    builder.priority = int(token[5:])
                elif token.startswith("tid="):
                    builder.tid = parse_long(token[4:])
                elif token.startswith("nid="):
                    builder.nid = parse_nid(token[4:])
                elif re.fullmatch(r"#\d+", token):
                    builder.id = int(token[1:])
        except ValueError as ex:
            raise ThreadDumpParseError(f"Unable to parse thread header: {ex}", chunk) from ex

    def _init_stack_trace(self, builder: ThreadBuilder, trace: str, chunk: str) -> None:
        frames: List[StackFrame] = []
        monitors: List[Monitor] = []
        synchronizers: List[ThreadLock] = []
        waiting_to: Optional[ThreadLock] = None  # blocked entering a monitor
        waiting_on: Optional[ThreadLock] = None  # in Object.wait() or parked
        depth = -1

        lines = (line.rstrip("\r") for line in trace.split("\n") if line.strip())
        for line in lines:
            frame = parse_frame(line)
            if frame is not None:
                frames.append(frame)
                depth += 1
                continue

            match = ACQUIRED_LINE.search(line)
            if match:
                monitors.append(Monitor(self._lock(match, chunk), depth))
                continue

            match = WAITING_TO_LOCK_LINE.search(line)
            if match:
                lock = self._lock(match, chunk)
                if waiting_to is not None:
                    # BLOCKED threads in Object.wait() may repeat 'waiting to re-lock' on frames entering the monitor
                    if "- waiting to re-lock in wait() <" in line and lock == waiting_to:
                        self._log_fixup("Ignoring repeated bogus 'waiting to re-lock in wait' lines", chunk)
                        continue
                    raise ThreadDumpParseError("Waiting to lock reported several times per single thread", chunk)
                waiting_to = lock
                continue

            match = WAITING_ON_LINE.search(line)
            if match:
                if waiting_on is not None:
                    raise ThreadDumpParseError("Waiting on lock reported several times per single thread", chunk)
                waiting_on = self._lock(match, chunk)
                continue

            if "Locked ownable synchronizers:" in line:
                for line in lines:
                    if "- None" in line:
                        break
                    match = OWNABLE_SYNCHRONIZER_LINE.search(line)
                    if match is None:
                        raise ThreadDumpParseError(f"Unable to parse ownable synchronizer: {line}", chunk)
                    synchronizers.append(self._lock(match, chunk))
                continue

            if line == "   No compile task" or line.startswith("   Compiling: "):
                continue

            logger.warning("Unknown line: %s", line)

        builder.stack_trace = StackTrace(frames)
        status = builder.status

        # jstack reports the monitor of Object.wait() as locked when entering the wait
        if waiting_on is None and not status.is_runnable and builder.stack_trace.head == WAIT_FRAME:
            acquired = list(dict.fromkeys(m.lock for m in monitors))
            if len(acquired) == 1:
                waiting_on = acquired[0]
                self._log_fixup("Adjust lock state from 'locked' to 'waiting on' when thread entering Object.wait()", chunk)

        if waiting_on is not None:
            # Self lock presented when in Object.wait()
            _filter_monitors(monitors, waiting_on)

            # 'waiting on' is reported even when blocked re-entering the monitor after being notified
            if status.is_blocked:
                self._log_fixup(
                    "Adjust lock state from 'waiting on' to 'waiting to' when thread re-acquiring the monitor after Object.wait()",
                    chunk,
                )
                waiting_to = waiting_on
                waiting_on = None

        # Presumably entering or leaving parked state
        if waiting_on is not None and status.is_runnable:
            self._log_fixup("Remove 'waiting on' lock declared on RUNNABLE thread", chunk)
            waiting_on = None

        # Lock state is changed ahead of thread state while other threads can still hold the monitor
        if status.is_blocked and waiting_to is None:
            monitor = _monitor_just_acquired(monitors)
            if monitor is not None:
                self._log_fixup("Adjust lock state from 'locked' to 'waiting to' on BLOCKED thread", chunk)
                waiting_to = monitor.lock
                monitors.remove(monitor)
            else:
                self._log_fixup("Adjust thread state from 'BLOCKED' to 'RUNNABLE' when monitor is missing", chunk)
                status = builder.status = ThreadStatus.RUNNABLE

        if status.is_blocked and waiting_to is not None:
            if _filter_monitors(monitors, waiting_to):
                self._log_fixup("Removed owned monitor that the thread is waiting to lock", chunk)

        if status.is_waiting:
            if waiting_to is not None and waiting_to == waiting_on:
                waiting_to = None
                self._log_fixup("Removed waiting-to lock when the thread is waiting on the same lock", chunk)
            if waiting_on is not None and _filter_monitors(monitors, waiting_on):
                self._log_fixup("Removed acquired monitor(s) when the thread is waiting on the same lock", chunk)

        if waiting_to is not None and not status.is_blocked:
            raise ThreadDumpParseError(f"{status.name} thread declares it is waiting to acquire a lock", chunk)
        if waiting_on is not None and not (status.is_waiting or status.is_parked):
            raise ThreadDumpParseError(f"{status.name} thread declares it is waiting on lock", chunk)

        builder.acquired_monitors = monitors
        builder.acquired_synchronizers = synchronizers
        builder.waiting_to_lock = waiting_to
        builder.waiting_on_lock = waiting_on

    def _lock(self, match: "re.Match", chunk: str) -> ThreadLock:
        try:
            return ThreadLock(match.group(2), parse_long(match.group(1)))
        except ValueError as ex:
            raise ThreadDumpParseError(f"Failed parsing lock {match.group(0)}: {ex}", chunk) from ex

    def _log_fixup(self, message: str, chunk: str) -> None:
        level = logging.WARNING if self.fail_on_errors else logging.DEBUG
        logger.log(level, "FIXUP: %s:\n%s", message, chunk)


def _monitor_just_acquired(monitors: List[Monitor]) -> Optional[Monitor]:
    """The only monitor acquired in the innermost frame, None if there is none or it was acquired earlier too."""
    innermost = [m for m in monitors if m.depth == 0]
    if len(innermost) != 1:
        return None

    monitor = innermost[0]
    if any(m.lock == monitor.lock for m in monitors if m is not monitor):
        return None
    return monitor


def _filter_monitors(monitors: List[Monitor], lock: ThreadLock) -> bool:
    kept = [m for m in monitors if m.lock != lock]
    removed = len(kept) != len(monitors)
    monitors[:] = kept
    return removed


def parse_thread_dump(text: str, fail_on_errors: Optional[bool] = None) -> ProcessRuntime:
    return ThreadDumpParser(fail_on_errors).from_string(text)
