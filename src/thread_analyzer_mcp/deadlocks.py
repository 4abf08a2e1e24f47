from typing import Dict, List, Set, Tuple

from .query import QueryResult
from .runtime import ThreadSet
from .threads import ProcessThread


class Deadlocks:
    """Detect cycles of threads blocking each other.

    Only cycles reachable from the threads of the queried set are reported, the
    walk itself can pass through any thread of the runtime.
    """

    def __init__(self, show_stack_traces: bool = False):
        self.show_stack_traces = show_stack_traces

    def query(self, threads: ThreadSet) -> "DeadlocksResult":
        return DeadlocksResult(threads, self.show_stack_traces)


class DeadlocksResult(QueryResult):

    def __init__(self, threads: ThreadSet, show_stack_traces: bool = False):
        super().__init__(show_stack_traces)

        deadlocks: Dict[ThreadSet, None] = {}
        involved: Dict[ProcessThread, None] = {}
        # No need to walk from a thread more than once
        analyzed: Set[ProcessThread] = set()

        for thread in threads:
            if thread in analyzed:
                continue

            candidate: List[ProcessThread] = []
            positions: Dict[ProcessThread, int] = {}
            blocking = thread.get_blocking_thread()
            while blocking is not None:
                if blocking in positions:
                    cycle = candidate[positions[blocking]:]
                    deadlocks[threads.derive(cycle)] = None
                    involved.update(dict.fromkeys(cycle))
                    break

                if blocking in analyzed:
                    break

                positions[blocking] = len(candidate)
                candidate.append(blocking)
                blocking = blocking.get_blocking_thread()

            analyzed.add(thread)
            analyzed.update(candidate)

        self._deadlocks: Tuple[ThreadSet, ...] = tuple(deadlocks)
        self._involved = threads.derive(involved)

    @property
    def deadlocks(self) -> Tuple[ThreadSet, ...]:
        return self._deadlocks

    @property
    def involved_threads(self) -> ThreadSet:
        return self._involved

    def render(self) -> str:
        out = []
        for i, deadlock in enumerate(self._deadlocks, 1):
            involved_locks = set()
            for thread in deadlock:
                involved_locks.add(thread.waiting_to_lock)
                involved_locks.add(thread.waiting_on_lock)

            out.append(f"\nDeadlock #{i}:\n")
            for thread in deadlock:
                out.append(thread.header + "\n")
                if thread.waiting_to_lock is not None:
                    out.append(f"\tWaiting to {thread.waiting_to_lock}\n")
                elif thread.waiting_on_lock is not None:
                    out.append(f"\tWaiting on {thread.waiting_on_lock}\n")

                for lock in thread.acquired_locks:
                    mark = "*" if lock in involved_locks else " "
                    out.append(f"\tAcquired {mark} {lock}\n")

        return "".join(out)

    def summary(self) -> str:
        return f"Deadlocks: {len(self._deadlocks)}\n"

    def exit_code(self) -> int:
        return len(self._deadlocks)
