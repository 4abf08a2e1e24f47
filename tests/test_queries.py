from thread_analyzer_mcp.blocking_tree import BlockingTree, Tree
from thread_analyzer_mcp.deadlocks import Deadlocks
from thread_analyzer_mcp.model import ThreadLock
from thread_analyzer_mcp.runtime import ProcessRuntime
from thread_analyzer_mcp.threads import name_contains, name_is
from thread_analyzer_mcp.top_contenders import TopContenders

X = ThreadLock("java.lang.Object", 0x10)
Y = ThreadLock("java.lang.Object", 0x20)
Z = ThreadLock("java.lang.Object", 0x30)


def named(runtime, name):
    return runtime.threads.where(name_is(name)).only_thread()


def names(threads):
    return [t.name for t in threads]


def test_deadlock_detected(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=X),
    ])
    result = runtime.query(Deadlocks())

    assert len(result.deadlocks) == 1
    assert result.deadlocks[0] == runtime.threads
    assert result.involved_threads == runtime.threads
    assert result.exit_code() == 1
    assert result.summary() == "Deadlocks: 1\n"

    report = result.render()
    assert report.startswith("\nDeadlock #1:\n")
    assert '"A" #1 tid=0x1 nid=1\n\tWaiting to <0x20> (a java.lang.Object)\n\tAcquired * <0x10> (a java.lang.Object)\n' in report
    assert '"B" #2 tid=0x2 nid=2\n\tWaiting to <0x10> (a java.lang.Object)\n\tAcquired * <0x20> (a java.lang.Object)\n' in report


def test_no_deadlock_without_cycle(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=Z),
        make_thread("C", locked=[Z]),
    ])
    result = runtime.query(Deadlocks())

    assert named(runtime, "A").get_blocking_thread() == named(runtime, "B")
    assert named(runtime, "B").get_blocking_thread() == named(runtime, "C")
    assert result.deadlocks == ()
    assert not result.involved_threads
    assert result.exit_code() == 0
    assert str(result) == "Deadlocks: 0\n"


def test_thread_blocked_by_deadlock_is_not_part_of_it(make_thread):
    runtime = ProcessRuntime([
        make_thread("C", waiting_to=X),
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=X, synchronizers=[Z]),
    ])
    result = runtime.query(Deadlocks())

    assert len(result.deadlocks) == 1
    assert set(names(result.involved_threads)) == {"A", "B"}
    # Synchronizer not taking part in the cycle
    assert "\tAcquired   <0x30> (a java.lang.Object)\n" in result.render()


def test_deadlock_reachable_from_queried_threads(make_thread):
    runtime = ProcessRuntime([
        make_thread("C", waiting_to=X),
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=X),
        make_thread("D"),
    ])

    reachable = runtime.threads.where(name_is("C")).query(Deadlocks())
    assert set(names(reachable.involved_threads)) == {"A", "B"}

    unreachable = runtime.threads.where(name_is("D")).query(Deadlocks())
    assert unreachable.deadlocks == ()


def test_two_independent_deadlocks(make_thread):
    w = ThreadLock("java.lang.Object", 0x40)
    runtime = ProcessRuntime([
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=X),
        make_thread("C", locked=[Z], waiting_to=w),
        make_thread("D", locked=[w], waiting_to=Z),
    ])
    result = runtime.query(Deadlocks())

    assert [set(names(deadlock)) for deadlock in result.deadlocks] == [{"A", "B"}, {"C", "D"}]
    assert "Deadlock #2:" in result.render()


def test_sample_deadlock(sample_runtime):
    result = sample_runtime.query(Deadlocks(show_stack_traces=True))

    assert len(result.deadlocks) == 1
    assert set(names(result.deadlocks[0])) == {"Thread-1", "Thread-2"}

    out = str(result)
    assert "\tAcquired * <0x7ffe00400> (a java.lang.Object)\n" in out
    assert "\tat com.example.Deadlock.lockBoth(Deadlock.java:25)" in out
    assert out.endswith("Deadlocks: 1\n")


def test_blocking_tree_pruned_to_queried_threads(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X]),
        make_thread("B", locked=[Y], waiting_to=X),
        make_thread("C", waiting_to=X),
        make_thread("D", waiting_to=Y),
    ])
    a, b, c, d = (named(runtime, name) for name in "ABCD")

    full = runtime.query(BlockingTree())
    assert full.trees == (Tree(a, Tree(b, Tree(d)), Tree(c)),)
    assert full.roots == runtime.threads.where(name_is("A"))
    assert full.summary() == "All threads: 4; Roots: 1\n"

    pruned = runtime.threads.where(name_is("D")).query(BlockingTree())
    assert pruned.trees == (Tree(a, Tree(b, Tree(d))),)
    assert names(pruned.involved_threads) == ["A", "B", "D"]
    assert pruned.exit_code() == 3

    root_only = runtime.threads.where(name_is("A")).query(BlockingTree())
    assert root_only.trees == (Tree(a),)


def test_blocking_tree_render(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X]),
        make_thread("B", locked=[Y], waiting_to=X),
        make_thread("D", waiting_to=Y),
    ])
    result = runtime.query(BlockingTree())

    assert result.render() == '"A" #1 tid=0x1 nid=1\n\t"B" #2 tid=0x2 nid=2\n\t\t"D" #3 tid=0x3 nid=3\n\n'
    assert str(result) == result.render() + "All threads: 3; Roots: 1\n"


def test_deadlocked_threads_end_blocking_tree(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X], waiting_to=Y),
        make_thread("B", locked=[Y], waiting_to=X),
        make_thread("C", waiting_to=X),
    ])
    a, c = named(runtime, "A"), named(runtime, "C")

    result = runtime.query(BlockingTree())
    assert result.trees == (Tree(a, Tree(c)),)
    assert len(result.deadlocks.deadlocks) == 1
    assert set(names(result.involved_threads)) == {"A", "B", "C"}
    assert result.summary() == "All threads: 3; Roots: 1 Deadlocks: 1\n"
    assert "Deadlock #1:" in result.render()


def test_no_blocking_tree(make_thread):
    runtime = ProcessRuntime([make_thread("A", locked=[X]), make_thread("B")])
    result = runtime.query(BlockingTree())

    assert result.trees == ()
    assert not result.roots
    assert result.exit_code() == 0
    assert str(result) == "All threads: 0; Roots: 0\n"


def test_long_blocking_chain(make_thread):
    locks = [ThreadLock("java.lang.Object", 0x1000 + i) for i in range(1000)]
    builders = [make_thread("t0", locked=[locks[0]])]
    builders.extend(make_thread(f"t{i}", locked=[locks[i]], waiting_to=locks[i - 1]) for i in range(1, 1000))
    runtime = ProcessRuntime(builders)

    chain = list(runtime.threads)
    expected = Tree(chain[-1])
    for thread in reversed(chain[:-1]):
        expected = Tree(thread, expected)

    result = runtime.query(BlockingTree())
    assert result.trees == (expected,)
    assert result.summary() == "All threads: 1000; Roots: 1\n"
    assert str(result).count("\n") == 1002
    assert result.render().endswith("\t" * 999 + '"t999" #1000 tid=0x3e8 nid=1000\n\n')

    last = runtime.threads.where(name_is("t999")).query(BlockingTree())
    assert last.trees == (expected,)
    assert len(last.involved_threads) == 1000

    assert runtime.query(Deadlocks()).deadlocks == ()
    assert runtime.query(TopContenders()).blocked_count == 999


def test_sample_blocking_trees(sample_runtime, sample_runtime_2):
    main, worker_1, worker_2 = (named(sample_runtime, n) for n in ("main", "worker-1", "worker-2"))
    result = sample_runtime.query(BlockingTree())
    assert result.trees == (Tree(main, Tree(worker_1), Tree(worker_2)),)
    assert result.summary() == "All threads: 5; Roots: 1 Deadlocks: 1\n"

    owner, middle, leaf_1, leaf_2 = (named(sample_runtime_2, n) for n in ("owner", "middle", "leaf-1", "leaf-2"))
    result = sample_runtime_2.query(BlockingTree())
    assert result.trees == (Tree(owner, Tree(middle, Tree(leaf_1), Tree(leaf_2))),)
    assert result.summary() == "All threads: 4; Roots: 1\n"

    only_leaf = sample_runtime_2.threads.where(name_is("leaf-2")).query(BlockingTree())
    assert only_leaf.trees == (Tree(owner, Tree(middle, Tree(leaf_2))),)


def test_top_contenders_ranked(make_thread):
    runtime = ProcessRuntime([
        make_thread("D", locked=[Y]),
        make_thread("A", locked=[X]),
        make_thread("B", waiting_to=X),
        make_thread("C", waiting_to=X),
        make_thread("E", waiting_to=Y),
        make_thread("F"),
    ])
    result = runtime.query(TopContenders())

    assert names(result.contenders) == ["A", "D"]
    assert names(result.blockers) == ["A", "D"]
    assert names(result.blocked_by(named(runtime, "A"))) == ["B", "C"]
    assert result.blocked_by(named(runtime, "F")) is None
    assert result.blocked_count == 3
    assert result.exit_code() == 2
    assert result.summary() == "Blocking threads: 2; Blocked threads: 3\n"
    assert result.render() == (
        '* "A" #2 tid=0x2 nid=2\n'
        '  (1) "B" #3 tid=0x3 nid=3\n'
        '  (2) "C" #4 tid=0x4 nid=4\n'
        '* "D" #1 tid=0x1 nid=1\n'
        '  (1) "E" #5 tid=0x5 nid=5\n'
    )


def test_top_contenders_ties_keep_thread_order(make_thread):
    runtime = ProcessRuntime([
        make_thread("first", locked=[X]),
        make_thread("second", locked=[Y]),
        make_thread("waiting-second", waiting_to=Y),
        make_thread("waiting-first", waiting_to=X),
    ])
    result = runtime.query(TopContenders())

    assert names(result.contenders) == ["first", "second"]


def test_top_contenders_of_selected_threads(make_thread):
    runtime = ProcessRuntime([
        make_thread("A", locked=[X]),
        make_thread("B", waiting_to=X),
        make_thread("D", locked=[Y]),
        make_thread("E", waiting_to=Y),
    ])
    result = runtime.threads.where(name_is("D")).query(TopContenders())

    assert names(result.contenders) == ["D"]
    assert names(result.involved_threads) == ["D", "E"]


def test_sample_top_contenders(sample_runtime):
    result = sample_runtime.query(TopContenders(show_stack_traces=True))

    assert names(result.contenders) == ["main", "Thread-1", "Thread-2"]
    assert result.blocked_count == 4
    assert result.exit_code() == 3
    assert str(result).endswith("Blocking threads: 3; Blocked threads: 4\n")

    workers = sample_runtime.threads.where(name_contains("worker"))
    assert not workers.query(TopContenders()).contenders
