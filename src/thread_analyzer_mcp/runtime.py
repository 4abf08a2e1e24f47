"""Process runtime snapshot and the thread sets derived from it."""

from itertools import chain
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import IllegalRuntimeStateError, LockOwnershipError
from .model import Mode, ThreadLock
from .threads import Predicate, ProcessThread, ThreadBuilder


class ProcessRuntime:
    """All threads of a process captured at one instant.

    Built once from staging records regardless of where they came from, then
    immutable. Every lock can be owned by at most one thread.
    """

    def __init__(self, builders: Iterable[ThreadBuilder], header: Iterable[str] = ()):
        builders = list(builders)
        threads = list(dict.fromkeys(ProcessThread.from_builder(self, b) for b in builders))
        if len(threads) != len(builders):
            raise IllegalRuntimeStateError(
                f"{len(builders)} builders produced {len(threads)} threads"
            )

        self.header = tuple(header)

        self._owners: Dict[ThreadLock, ProcessThread] = {}
        self._waiting_to: Dict[ThreadLock, List[ProcessThread]] = {}
        for thread in threads:
            for lock in thread.acquired_locks:
                owner = self._owners.setdefault(lock, thread)
                if owner is not thread:
                    raise LockOwnershipError(lock, owner, thread)

            if thread.waiting_to_lock is not None:
                self._waiting_to.setdefault(thread.waiting_to_lock, []).append(thread)

        self.threads = ThreadSet(self, threads)
        self.empty_thread_set = ThreadSet(self, ())

    def get_thread_set(self, threads: Iterable[ProcessThread]) -> "ThreadSet":
        """Thread set scoped to this runtime."""
        threads = list(threads)
        if not threads:
            return self.empty_thread_set
        return ThreadSet(self, threads)

    def owner_of(self, lock: ThreadLock) -> Optional[ProcessThread]:
        return self._owners.get(lock)

    def blocked_by(self, thread: ProcessThread) -> List[ProcessThread]:
        blocked = []
        for lock in thread.acquired_locks:
            for waiting in self._waiting_to.get(lock, ()):
                if waiting is not thread:
                    blocked.append(waiting)
        return blocked

    def blocking(self, thread: ProcessThread) -> Optional[ProcessThread]:
        for lock in (thread.waiting_to_lock, thread.waiting_on_lock):
            if lock is None:
                continue
            owner = self._owners.get(lock)
            if owner is not None and owner is not thread:
                return owner
        return None

    def query(self, query):
        """Run query against all threads in the runtime."""
        return self.threads.query(query)

    def render(self, mode: Mode = Mode.HUMAN) -> str:
        header = "".join(f"{line}\n" for line in self.header)
        if header:
            header += "\n"
        return header + self.threads.render(mode)

    def __str__(self):
        return self.render()


class ThreadSet:
    """Immutable, ordered subset of threads of a single runtime."""

    __slots__ = ("runtime", "_threads", "_members")

    def __init__(self, runtime: ProcessRuntime, threads: Iterable[ProcessThread]):
        self.runtime = runtime
        self._threads = tuple(dict.fromkeys(threads))
        for thread in self._threads:
            if thread.runtime is not runtime:
                raise ValueError(f"Thread '{thread.name}' belongs to different runtime")
        self._members = frozenset(self._threads)

    def only_thread(self) -> ProcessThread:
        if len(self._threads) != 1:
            raise ValueError(f"Exactly one thread expected in the set. Found {len(self._threads)}")
        return self._threads[0]

    def derive(self, threads: Iterable[ProcessThread]) -> "ThreadSet":
        """New set bound to the same runtime."""
        return self.runtime.get_thread_set(threads)

    def where(self, predicate: Predicate) -> "ThreadSet":
        return self.derive(t for t in self._threads if predicate(t))

    def ignoring(self, other: "ThreadSet") -> "ThreadSet":
        self._check_same_runtime(other)
        if not self._threads or not other._threads:
            return self
        return self.derive(t for t in self._threads if t not in other._members)

    def plus(self, other: "ThreadSet") -> "ThreadSet":
        self._check_same_runtime(other)
        return self.derive(chain(self._threads, other._threads))

    def intersect(self, other: "ThreadSet") -> "ThreadSet":
        self._check_same_runtime(other)
        return self.derive(t for t in self._threads if t in other._members)

    def get_blocked_threads(self) -> "ThreadSet":
        """Threads blocked by any of the threads in this set."""
        acquired = set()
        for thread in self._threads:
            acquired.update(thread.acquired_locks)

        return self.derive(
            t for t in self.runtime.threads if t.waiting_to_lock is not None and t.waiting_to_lock in acquired
        )

    def get_blocking_threads(self) -> "ThreadSet":
        """Threads holding a lock any of the threads in this set is waiting to acquire."""
        blocking = []
        for thread in self._threads:
            if thread.waiting_to_lock is not None:
                owner = self.runtime.owner_of(thread.waiting_to_lock)
                if owner is not None:
                    blocking.append(owner)
        return self.derive(blocking)

    def query(self, query):
        """Run query using this as the initial set."""
        return query.query(self)

    def render(self, mode: Mode = Mode.HUMAN) -> str:
        return "".join(f"{thread.render(mode)}\n\n" for thread in self._threads)

    def _check_same_runtime(self, other: "ThreadSet") -> None:
        if other.runtime is not self.runtime:
            raise ValueError("Unable to combine thread sets of different runtimes")

    def __len__(self):
        return len(self._threads)

    def __iter__(self) -> Iterator[ProcessThread]:
        return iter(self._threads)

    def __contains__(self, thread):
        return thread in self._members

    def __eq__(self, other):
        if not isinstance(other, ThreadSet):
            return NotImplemented
        return self.runtime is other.runtime and self._members == other._members

    def __hash__(self):
        return hash((id(self.runtime), self._members))

    def __str__(self):
        return self.render()

    def __repr__(self):
        return f"ThreadSet({[t.name for t in self._threads]!r})"
