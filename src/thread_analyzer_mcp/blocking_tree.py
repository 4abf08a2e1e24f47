from typing import Dict, Iterable, List, Optional, Tuple

from .deadlocks import DeadlocksResult
from .model import Mode
from .query import QueryResult
from .runtime import ThreadSet
from .threads import ProcessThread, render_header


class Tree:
    """Blocking tree node: a thread and the subtrees of threads it blocks directly."""

    __slots__ = ("thread", "leaves")

    def __init__(self, thread: ProcessThread, *leaves: "Tree"):
        self.thread = thread
        self.leaves: Tuple[Tree, ...] = leaves

    def render(self, mode: Mode = Mode.HUMAN, prefix: str = "") -> str:
        out = []
        pending = [(self, prefix)]
        while pending:
            tree, indent = pending.pop()
            out.append(indent + render_header(tree.thread, mode) + "\n")
            pending.extend((leaf, indent + "\t") for leaf in reversed(tree.leaves))
        return "".join(out)

    def __eq__(self, other):
        if not isinstance(other, Tree):
            return NotImplemented

        # Leaves are compared regardless of order, a thread is blocked by one thread at most
        pending = [(self, other)]
        while pending:
            left, right = pending.pop()
            if left.thread != right.thread or len(left.leaves) != len(right.leaves):
                return False
            right_leaves = {leaf.thread: leaf for leaf in right.leaves}
            for leaf in left.leaves:
                match = right_leaves.get(leaf.thread)
                if match is None:
                    return False
                pending.append((leaf, match))
        return True

    def __hash__(self):
        return hash((self.thread, frozenset(leaf.thread for leaf in self.leaves)))

    def __str__(self):
        return self.render()

    def __repr__(self):
        return f"Tree({self.thread.name!r}, {[leaf.thread.name for leaf in self.leaves]!r})"


class BlockingTree:
    """Forest of threads blocking other threads.

    Deadlocked threads are never expanded so the trees stay finite.
    """

    def __init__(self, show_stack_traces: bool = False):
        self.show_stack_traces = show_stack_traces

    def query(self, threads: ThreadSet) -> "BlockingTreeResult":
        """Only branches containing a thread of ``threads`` are kept, pass all threads to see everything."""
        return BlockingTreeResult(threads, self.show_stack_traces)


class BlockingTreeResult(QueryResult):

    def __init__(self, threads: ThreadSet, show_stack_traces: bool = False):
        super().__init__(show_stack_traces)
        runtime = threads.runtime

        self._deadlocks = DeadlocksResult(runtime.threads)
        self._deadlocked = self._deadlocks.involved_threads

        roots: List[Tree] = []
        for thread in runtime.threads:
            # Only threads not blocked themselves, unless deadlocked
            if thread.waiting_to_lock is not None and thread not in self._deadlocked:
                continue
            if not thread.acquired_locks:
                continue
            if not thread.get_blocked_threads().ignoring(self._deadlocked):
                continue

            roots.append(self._build_down(thread))

        self._trees = tuple(self._filter(roots, threads))

        involved: Dict[ProcessThread, None] = {}
        for tree in self._trees:
            _flatten(tree, involved)
        for deadlock in self._deadlocks.deadlocks:
            involved.update(dict.fromkeys(deadlock))

        self._involved = threads.derive(involved)

    def _build_down(self, root: ProcessThread) -> Tree:
        blocked_by: Dict[ProcessThread, List[ProcessThread]] = {}
        order: List[ProcessThread] = []
        pending = [root]
        while pending:
            thread = pending.pop()
            blocked = list(thread.get_blocked_threads().ignoring(self._deadlocked))
            blocked_by[thread] = blocked
            order.append(thread)
            pending.extend(blocked)

        # Blocked threads come after their blocker in the walk order
        built: Dict[ProcessThread, Tree] = {}
        for thread in reversed(order):
            built[thread] = Tree(thread, *(built[blocked] for blocked in blocked_by[thread]))
        return built[root]

    def _filter(self, trees: Iterable[Tree], threads: ThreadSet) -> List[Tree]:
        # Keep selected nodes and nodes leading to them
        trees = list(trees)
        filtered: Dict[ProcessThread, Optional[Tree]] = {}
        pending = [(tree, False) for tree in trees]
        while pending:
            tree, expanded = pending.pop()
            if not expanded:
                pending.append((tree, True))
                pending.extend((leaf, False) for leaf in tree.leaves)
                continue

            leaves = [filtered[leaf.thread] for leaf in tree.leaves if filtered[leaf.thread] is not None]
            if tree.thread in threads or leaves:
                filtered[tree.thread] = Tree(tree.thread, *leaves)
            else:
                filtered[tree.thread] = None

        return [filtered[tree.thread] for tree in trees if filtered[tree.thread] is not None]

    @property
    def trees(self) -> Tuple[Tree, ...]:
        """Empty when there are no blocking threads."""
        return self._trees

    @property
    def roots(self) -> ThreadSet:
        return self._involved.derive(tree.thread for tree in self._trees)

    @property
    def deadlocks(self) -> DeadlocksResult:
        return self._deadlocks

    @property
    def involved_threads(self) -> ThreadSet:
        return self._involved

    def render(self) -> str:
        out = "".join(tree.render() + "\n" for tree in self._trees)
        if self._deadlocks.deadlocks:
            out += "\n" + self._deadlocks.render()
        return out

    def summary(self) -> str:
        out = f"All threads: {len(self._involved)}; Roots: {len(self._trees)}"
        if self._deadlocks.deadlocks:
            return out + " " + self._deadlocks.summary()
        return out + "\n"


def _flatten(tree: Tree, accumulator: Dict[ProcessThread, None]) -> None:
    pending = [tree]
    while pending:
        node = pending.pop()
        accumulator[node.thread] = None
        pending.extend(reversed(node.leaves))
