from abc import ABC, abstractmethod

from .runtime import ThreadSet


class QueryResult(ABC):
    """Result of a query run against a thread set.

    ``str()`` gives the detailed report, followed by full listing of involved
    threads when stack traces were requested, followed by the summary.
    """

    def __init__(self, show_stack_traces: bool = False):
        self.show_stack_traces = show_stack_traces

    @abstractmethod
    def render(self) -> str:
        """Detailed query result."""

    @property
    @abstractmethod
    def involved_threads(self) -> ThreadSet:
        """Threads the result is about."""

    def summary(self) -> str:
        return ""

    def exit_code(self) -> int:
        """Exit code to report when run as a script, number of involved threads by default."""
        return len(self.involved_threads)

    def __str__(self):
        out = self.render()
        if self.show_stack_traces and len(self.involved_threads):
            out += "\n\n" + self.involved_threads.render()
        return out + self.summary()
