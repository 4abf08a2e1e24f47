from itertools import chain
from typing import Dict, Optional

from .model import Mode
from .query import QueryResult
from .runtime import ThreadSet
from .threads import ProcessThread, render_header


class TopContenders:
    """Rank threads by the number of threads they block.

    Only threads of the queried set are considered contenders, the blocked
    ones can be any threads of the runtime.
    """

    def __init__(self, show_stack_traces: bool = False):
        self.show_stack_traces = show_stack_traces

    def query(self, threads: ThreadSet) -> "TopContendersResult":
        return TopContendersResult(threads, self.show_stack_traces)


class TopContendersResult(QueryResult):

    def __init__(self, threads: ThreadSet, show_stack_traces: bool = False):
        super().__init__(show_stack_traces)

        ranked = []
        for thread in threads:
            blocked = thread.get_blocked_threads()
            if blocked:
                ranked.append((thread, blocked))
        # Order of threads blocking the same number of threads is not significant
        ranked.sort(key=lambda contention: len(contention[1]), reverse=True)

        self._contenders: Dict[ProcessThread, ThreadSet] = dict(ranked)
        blocked_threads = dict.fromkeys(chain.from_iterable(blocked for _, blocked in ranked))
        self._blocked_count = len(blocked_threads)
        self._involved = threads.derive(chain(self._contenders, blocked_threads))

    @property
    def contenders(self) -> Dict[ProcessThread, ThreadSet]:
        """Contenders mapped to threads they block, most blocking first."""
        return dict(self._contenders)

    @property
    def blockers(self) -> ThreadSet:
        return self._involved.derive(self._contenders)

    @property
    def blocked_count(self) -> int:
        """Distinct threads blocked by any of the contenders."""
        return self._blocked_count

    def blocked_by(self, thread: ProcessThread) -> Optional[ThreadSet]:
        """Threads blocked by a contender, None if the thread is not one."""
        return self._contenders.get(thread)

    @property
    def involved_threads(self) -> ThreadSet:
        return self._involved

    def render(self) -> str:
        out = []
        for contender, blocked in self._contenders.items():
            out.append(f"* {render_header(contender, Mode.HUMAN)}\n")
            for i, thread in enumerate(blocked, 1):
                out.append(f"  ({i}) {render_header(thread, Mode.HUMAN)}\n")
        return "".join(out)

    def summary(self) -> str:
        return f"Blocking threads: {len(self._contenders)}; Blocked threads: {self._blocked_count}\n"

    def exit_code(self) -> int:
        return len(self._contenders)
