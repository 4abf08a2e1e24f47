from itertools import count
from pathlib import Path

import pytest

from thread_analyzer_mcp.model import Monitor, ThreadStatus
from thread_analyzer_mcp.parser import ThreadDumpParser
from thread_analyzer_mcp.threads import ThreadBuilder

BASE_DIR = Path(__file__).parent


@pytest.fixture
def sample_runtime():
    return ThreadDumpParser(fail_on_errors=True).from_file(BASE_DIR / "sample_thread_dump.txt")


@pytest.fixture
def sample_runtime_2():
    return ThreadDumpParser(fail_on_errors=True).from_file(BASE_DIR / "sample_thread_dump_2.txt")


@pytest.fixture
def make_thread():
    """Builder factory, status follows the declared locks unless given."""
    ids = count(1)

    def make(name, locked=(), waiting_to=None, waiting_on=None, synchronizers=(), status=None):
        if status is None:
            if waiting_to is not None:
                status = ThreadStatus.BLOCKED
            elif waiting_on is not None:
                status = ThreadStatus.IN_OBJECT_WAIT
            else:
                status = ThreadStatus.RUNNABLE
        n = next(ids)
        return ThreadBuilder(
            name=name,
            id=n,
            nid=n,
            tid=n,
            status=status,
            waiting_to_lock=waiting_to,
            waiting_on_lock=waiting_on,
            acquired_monitors=[Monitor(lock, 0) for lock in locked],
            acquired_synchronizers=list(synchronizers),
        )

    return make
