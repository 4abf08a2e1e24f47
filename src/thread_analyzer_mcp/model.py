"""Value primitives shared by the runtime model and the dump parser."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

_UNSIGNED_64 = (1 << 64) - 1

UNKNOWN_LINE = -1
NATIVE_LINE = -2


def to_unsigned(value: int) -> int:
    """Two's complement view of a signed 64-bit id, for hex rendering."""
    return value & _UNSIGNED_64


class Mode(Enum):
    """Rendering mode: HUMAN for reading, MACHINE (porcelain) for scripting."""

    HUMAN = "human"
    MACHINE = "machine"

    @property
    def is_human(self) -> bool:
        return self is Mode.HUMAN


class ThreadLock:
    """Lock identified by its address (or identity hash code)."""

    __slots__ = ("class_name", "id")

    def __init__(self, class_name: str, id: int):
        self.class_name = class_name
        self.id = id

    def render(self, mode: Mode = Mode.HUMAN) -> str:
        fmt = "<0x{:x}> (a {})" if mode.is_human else "<0x{:016x}> (a {})"
        return fmt.format(to_unsigned(self.id), self.class_name)

    def __eq__(self, other):
        if not isinstance(other, ThreadLock):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __str__(self):
        return self.render()

    def __repr__(self):
        return f"ThreadLock({self.class_name!r}, {self.id:#x})"


@dataclass(frozen=True)
class Monitor:
    """Monitor lock together with the stack depth it was acquired at."""

    lock: ThreadLock
    depth: int

    def __str__(self):
        return str(self.lock)


@dataclass(frozen=True)
class StackFrame:
    class_name: str
    method_name: str
    file_name: Optional[str] = None
    line_number: int = UNKNOWN_LINE

    @classmethod
    def native(cls, class_name: str, method_name: str, file_name: Optional[str] = None) -> "StackFrame":
        return cls(class_name, method_name, file_name, NATIVE_LINE)

    @property
    def is_native(self) -> bool:
        return self.line_number == NATIVE_LINE

    @property
    def qualified_method(self) -> str:
        return f"{self.class_name}.{self.method_name}"

    def __str__(self):
        if self.is_native:
            source = "(Native Method)"
        elif self.file_name is not None and self.line_number >= 0:
            source = f"({self.file_name}:{self.line_number})"
        elif self.file_name is not None:
            source = f"({self.file_name})"
        else:
            source = "(Unknown Source)"
        return f"{self.qualified_method}{source}"


# Innermost frame of a thread in Object.wait()
WAIT_FRAME = StackFrame.native("java.lang.Object", "wait")


class StackTrace:
    """Immutable sequence of frames, innermost first."""

    __slots__ = ("_frames",)

    def __init__(self, frames: Iterable[StackFrame] = ()):
        self._frames: Tuple[StackFrame, ...] = tuple(frames)

    @property
    def frames(self) -> Tuple[StackFrame, ...]:
        return self._frames

    def get_frame(self, depth: int) -> Optional[StackFrame]:
        """Frame at given depth or None when the trace is not that deep."""
        if depth < 0:
            raise IndexError(depth)
        return self._frames[depth] if depth < len(self._frames) else None

    @property
    def head(self) -> Optional[StackFrame]:
        return self.get_frame(0)

    def __len__(self):
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)

    def __getitem__(self, index):
        return self._frames[index]

    def __eq__(self, other):
        if not isinstance(other, StackTrace):
            return NotImplemented
        return self._frames == other._frames

    def __hash__(self):
        return hash(self._frames)

    def __str__(self):
        return "".join(f"\n\tat {frame}" for frame in self._frames) + "\n"

    def __repr__(self):
        return f"StackTrace({list(self._frames)!r})"


UNSAFE_CLASSES = ("sun.misc.Unsafe", "jdk.internal.misc.Unsafe")


class ThreadStatus(Enum):
    NEW = ("NEW", "NEW")
    RUNNABLE = ("RUNNABLE", "RUNNABLE")
    SLEEPING = ("TIMED_WAITING (sleeping)", "TIMED_WAITING")
    # Object.wait()
    IN_OBJECT_WAIT = ("WAITING (on object monitor)", "WAITING")
    # Object.wait(long)
    IN_OBJECT_WAIT_TIMED = ("TIMED_WAITING (on object monitor)", "TIMED_WAITING")
    # LockSupport.park()
    PARKED = ("WAITING (parking)", "WAITING")
    # LockSupport.parkNanos()
    PARKED_TIMED = ("TIMED_WAITING (parking)", "TIMED_WAITING")
    BLOCKED = ("BLOCKED (on object monitor)", "BLOCKED")
    TERMINATED = ("TERMINATED", "TERMINATED")
    # Status could not be determined, typically VM service threads
    UNKNOWN = ("UNKNOWN", None)

    def __init__(self, title: str, state: Optional[str]):
        self.title = title
        self.state = state

    @property
    def is_new(self) -> bool:
        return self is ThreadStatus.NEW

    @property
    def is_runnable(self) -> bool:
        return self is ThreadStatus.RUNNABLE

    @property
    def is_sleeping(self) -> bool:
        return self is ThreadStatus.SLEEPING

    @property
    def is_waiting(self) -> bool:
        return self in (ThreadStatus.IN_OBJECT_WAIT, ThreadStatus.IN_OBJECT_WAIT_TIMED)

    @property
    def is_parked(self) -> bool:
        return self in (ThreadStatus.PARKED, ThreadStatus.PARKED_TIMED)

    @property
    def is_blocked(self) -> bool:
        return self is ThreadStatus.BLOCKED

    @property
    def is_terminated(self) -> bool:
        return self is ThreadStatus.TERMINATED

    @classmethod
    def from_string(cls, title: str) -> "ThreadStatus":
        """Resolve status from either its member name or its thread dump title."""
        title = title.strip()
        if title in cls.__members__:
            return cls[title]
        for status in cls:
            if status.title == title:
                return status
        raise ValueError(f"Unknown thread status: {title}")

    @classmethod
    def from_state(cls, state: str, head: Optional[StackFrame]) -> "ThreadStatus":
        """Infer detailed status from java.lang.Thread.State name and innermost frame."""
        if state in ("NEW", "RUNNABLE", "BLOCKED", "TERMINATED"):
            return cls[state]
        if state not in ("WAITING", "TIMED_WAITING"):
            return cls.UNKNOWN
        if head is None:
            return cls.UNKNOWN

        timed = state == "TIMED_WAITING"
        if head.qualified_method == "java.lang.Thread.sleep":
            return cls.SLEEPING
        if head.qualified_method == "java.lang.Object.wait":
            return cls.IN_OBJECT_WAIT_TIMED if timed else cls.IN_OBJECT_WAIT
        if head.method_name == "park" and head.class_name in UNSAFE_CLASSES:
            return cls.PARKED_TIMED if timed else cls.PARKED

        raise ValueError(f"Unable to infer thread status from {state} state in {head}")
