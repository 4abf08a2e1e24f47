"""Thread records: the mutable staging builder, the immutable thread and predicates."""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from .errors import IllegalRuntimeStateError
from .model import WAIT_FRAME, Mode, Monitor, StackTrace, ThreadLock, ThreadStatus, to_unsigned

if TYPE_CHECKING:
    from .runtime import ProcessRuntime, ThreadSet


@dataclass
class ThreadBuilder:
    """Per-thread staging record filled in by the parser or any other thread source.

    The runtime copies it field by field into a :class:`ProcessThread`, so a
    builder can be reused or modified after the runtime was created.
    """

    name: str = ""
    daemon: bool = False
    # not present in every dump
    priority: Optional[int] = None
    # java thread id, native id and the VM thread handle
    id: Optional[int] = None
    nid: Optional[int] = None
    tid: Optional[int] = None
    stack_trace: StackTrace = field(default_factory=StackTrace)
    status: ThreadStatus = ThreadStatus.UNKNOWN
    waiting_to_lock: Optional[ThreadLock] = None
    waiting_on_lock: Optional[ThreadLock] = None
    acquired_monitors: List[Monitor] = field(default_factory=list)
    acquired_synchronizers: List[ThreadLock] = field(default_factory=list)

    def render(self, mode: Mode = Mode.HUMAN) -> str:
        return render_thread(self, mode)

    def __str__(self):
        return self.render()


@dataclass(frozen=True, eq=False)
class ProcessThread:
    """Immutable thread bound to the runtime it was captured in."""

    runtime: "ProcessRuntime" = field(repr=False)
    name: str
    daemon: bool
    priority: Optional[int]
    id: Optional[int]
    nid: Optional[int]
    tid: Optional[int]
    stack_trace: StackTrace
    status: ThreadStatus
    waiting_to_lock: Optional[ThreadLock]
    waiting_on_lock: Optional[ThreadLock]
    acquired_monitors: Tuple[Monitor, ...]
    acquired_synchronizers: Tuple[ThreadLock, ...]

    def __post_init__(self):
        if not self.name:
            raise IllegalRuntimeStateError("Thread name not set")
        if self.id is None and self.nid is None and self.tid is None:
            raise IllegalRuntimeStateError(f"No thread identifier set for '{self.name}'")

        if self.status.is_blocked and self.waiting_to_lock is None:
            raise IllegalRuntimeStateError(
                f"Blocked thread does not declare monitor: >>>\n{self.render()}\n<<<"
            )
        if self.waiting_to_lock is not None and not self.status.is_blocked:
            raise IllegalRuntimeStateError(
                f"{self.status.name} thread declares it is waiting to lock: {render_header(self)}"
            )
        if self.waiting_on_lock is not None and not (self.status.is_waiting or self.status.is_parked):
            raise IllegalRuntimeStateError(
                f"{self.status.name} thread declares it is waiting on lock: {render_header(self)}"
            )

    @classmethod
    def from_builder(cls, runtime: "ProcessRuntime", builder: ThreadBuilder) -> "ProcessThread":
        return cls(
            runtime=runtime,
            name=builder.name,
            daemon=builder.daemon,
            priority=builder.priority,
            id=builder.id,
            nid=builder.nid,
            tid=builder.tid,
            stack_trace=builder.stack_trace,
            status=builder.status,
            waiting_to_lock=builder.waiting_to_lock,
            waiting_on_lock=builder.waiting_on_lock,
            acquired_monitors=tuple(builder.acquired_monitors),
            acquired_synchronizers=tuple(builder.acquired_synchronizers),
        )

    @property
    def state(self) -> Optional[str]:
        """java.lang.Thread.State name, None when unknown."""
        return self.status.state

    @property
    def monitor_locks(self) -> Tuple[ThreadLock, ...]:
        """Distinct monitors held, innermost first."""
        return tuple(dict.fromkeys(m.lock for m in self.acquired_monitors))

    @property
    def acquired_locks(self) -> Tuple[ThreadLock, ...]:
        """Distinct monitors and ownable synchronizers held."""
        locks = dict.fromkeys(m.lock for m in self.acquired_monitors)
        locks.update(dict.fromkeys(self.acquired_synchronizers))
        return tuple(locks)

    def get_blocked_threads(self) -> "ThreadSet":
        """Threads waiting to acquire a lock held by this thread."""
        return self.runtime.get_thread_set(self.runtime.blocked_by(self))

    def get_blocking_thread(self) -> Optional["ProcessThread"]:
        """Thread holding the lock this one waits for, None if there is none."""
        return self.runtime.blocking(self)

    def get_blocking_threads(self) -> "ThreadSet":
        blocking = self.get_blocking_thread()
        if blocking is None:
            return self.runtime.empty_thread_set
        return self.runtime.get_thread_set([blocking])

    @property
    def header(self) -> str:
        return render_header(self, Mode.HUMAN)

    def render(self, mode: Mode = Mode.HUMAN) -> str:
        return render_thread(self, mode)

    def __eq__(self, other):
        if not isinstance(other, ProcessThread):
            return NotImplemented
        return (self.id, self.nid, self.tid) == (other.id, other.nid, other.tid)

    def __hash__(self):
        return hash((self.id, self.nid, self.tid))

    def __str__(self):
        return self.render()


def render_header(thread, mode: Mode = Mode.HUMAN) -> str:
    parts = [f'"{thread.name}"']
    if thread.id is not None:
        parts.append(f"#{thread.id}")
    if thread.daemon:
        parts.append("daemon")
    if thread.priority is not None:
        parts.append(f"prio={thread.priority}")
    if thread.tid is not None:
        fmt = "tid=0x{:x}" if mode.is_human else "tid=0x{:016x}"
        parts.append(fmt.format(to_unsigned(thread.tid)))
    if thread.nid is not None:
        if mode.is_human:
            parts.append(f"nid={thread.nid}")
        else:
            parts.append("nid=0x{:016x}".format(to_unsigned(thread.nid)))
    return " ".join(parts)


def render_thread(thread, mode: Mode = Mode.HUMAN) -> str:
    """Render thread the way jstack does, with lock lines at their frames."""
    out = [render_header(thread, mode), f"\n   java.lang.Thread.State: {thread.status.title}"]

    frames = thread.stack_trace
    # Depth -1 holds locks reported before the first frame
    for depth in range(-1, len(frames)):
        if depth >= 0:
            out.append(f"\n\tat {frames[depth]}")

        # After the innermost frame, or right away when there is none
        if depth == min(0, len(frames) - 1):
            for lock in (thread.waiting_to_lock, thread.waiting_on_lock):
                if lock is not None:
                    out.append(f"\n\t- {_waiting_verb(thread)} {lock.render(mode)}")

        for monitor in thread.acquired_monitors:
            if monitor.depth == depth:
                out.append(f"\n\t- locked {monitor.lock.render(mode)}")

    if thread.acquired_synchronizers:
        out.append("\n\n   Locked ownable synchronizers:\n")
        for synchronizer in thread.acquired_synchronizers:
            out.append(f"\t- {synchronizer.render(mode)}\n")

    return "".join(out)


def _waiting_verb(thread) -> str:
    status = thread.status
    if status.is_parked:
        return "parking to wait for"
    if status.is_waiting:
        return "waiting on"
    if status.is_blocked:
        if thread.stack_trace.head == WAIT_FRAME:
            return "waiting to re-lock in wait()"
        return "waiting to lock"
    raise IllegalRuntimeStateError(f"{status.name} thread can not declare a lock: {thread.name}")


Predicate = Callable[[ProcessThread], bool]


def name_is(name: str) -> Predicate:
    return lambda thread: thread.name == name


def name_contains(pattern: Union[str, "re.Pattern"]) -> Predicate:
    """Match threads whose name contains a literal string or a compiled pattern."""
    if isinstance(pattern, re.Pattern):
        return lambda thread: pattern.search(thread.name) is not None
    return lambda thread: pattern in thread.name


def waiting_on_lock(class_name: str) -> Predicate:
    """Match threads waiting to be notified on a lock of given class."""
    def predicate(thread: ProcessThread) -> bool:
        lock = thread.waiting_on_lock
        return lock is not None and lock.class_name == class_name
    return predicate


def waiting_to_lock(class_name: str) -> Predicate:
    """Match threads blocked acquiring a lock of given class."""
    def predicate(thread: ProcessThread) -> bool:
        lock = thread.waiting_to_lock
        return lock is not None and lock.class_name == class_name
    return predicate


def acquired_lock(class_name: str) -> Predicate:
    return lambda thread: any(lock.class_name == class_name for lock in thread.acquired_locks)


def evaluating(method: str) -> Predicate:
    """Match threads with a frame of given fully qualified method, e.g. "java.lang.Object.wait"."""
    return lambda thread: any(frame.qualified_method == method for frame in thread.stack_trace)
