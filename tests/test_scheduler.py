import os
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

from relay.config import RunSettings
from relay.errors import (
    HandlerExecutionError,
    OrchestrationError,
    StalledError,
    TaskTimeoutError,
    UnknownCapabilityError,
)
from relay.scheduler import Scheduler, run_tasks
from relay.tasks.base import RunStatus, Task, TaskState
from relay.tasks.graph import TaskGraph


def _fan_out_tasks():
    return [
        Task("A", "architect", input="a"),
        Task("B", "python-developer", depends_on=["A"], input="b"),
        Task("C", "python-developer", depends_on=["A"], input="c"),
    ]


def test_fan_out_graph_succeeds(registry, call_log):
    result = run_tasks(_fan_out_tasks(), registry, max_concurrency=4)

    assert result.status is RunStatus.SUCCESS
    assert result.ok
    assert call_log.calls[0] == "a"
    assert sorted(call_log.calls[1:]) == ["b", "c"]
    assert result.rounds == 2
    assert list(result.context) == ["A", "B", "C"]
    assert result.record("B").output == {"input": "b", "seen": ["A"]}


def test_failed_dependency_skips_dependent(registry):
    tasks = [Task("A", "fail"), Task("B", "echo", depends_on=["A"], input="b")]

    result = run_tasks(tasks, registry)

    assert result.status is RunStatus.PARTIAL_FAILURE
    assert result.states() == {"A": TaskState.FAILED, "B": TaskState.SKIPPED}
    error = result.record("A").error
    assert isinstance(error, HandlerExecutionError)
    assert isinstance(error.__cause__, RuntimeError)
    assert result.record("A").output is None
    assert result.record("B").skip_reason == "dependency 'A' failed"


def test_failure_leaves_independent_branches_running(registry):
    tasks = [
        Task("A", "fail"),
        Task("B", "echo", depends_on=["A"]),
        Task("C", "echo", depends_on=["B"]),
        Task("X", "echo", input="x"),
        Task("Y", "echo", depends_on=["X"], input="y"),
    ]

    result = run_tasks(tasks, registry, max_concurrency=None)

    assert result.states() == {
        "A": TaskState.FAILED,
        "B": TaskState.SKIPPED,
        "C": TaskState.SKIPPED,
        "X": TaskState.COMPLETED,
        "Y": TaskState.COMPLETED,
    }
    assert result.outputs() == {"X": "x", "Y": "y"}


def test_unknown_capability_fails_only_that_task(registry):
    tasks = [
        Task("A", "unknown-role"),
        Task("B", "echo", depends_on=["A"]),
        Task("C", "echo", input="c"),
    ]

    result = run_tasks(tasks, registry, max_concurrency=2)

    assert result.record("A").final_state is TaskState.FAILED
    error = result.record("A").error
    assert isinstance(error, UnknownCapabilityError)
    assert error.task_id == "A"
    assert result.record("B").final_state is TaskState.SKIPPED
    assert result.record("C").final_state is TaskState.COMPLETED


def test_sequential_mode_follows_topological_order(registry):
    order = []
    registry.register("trace", lambda input, context: order.append(input))
    tasks = [
        Task("d", "trace", depends_on=["b", "c"], input="d"),
        Task("c", "trace", depends_on=["a"], input="c"),
        Task("b", "trace", depends_on=["a"], input="b"),
        Task("a", "trace", input="a"),
        Task("e", "trace", input="e"),
    ]

    result = run_tasks(tasks, registry, max_concurrency=1)

    assert result.ok
    assert order == ["a", "b", "c", "d", "e"]
    assert result.rounds == 5
    position = {name: index for index, name in enumerate(order)}
    for task in tasks:
        for dep in task.depends_on:
            assert position[dep] < position[task.id]


def test_round_is_dispatched_before_any_task_completes(registry):
    width = 4
    barrier = threading.Barrier(width, timeout=5)

    def rendezvous(input, context):
        barrier.wait()
        return input

    registry.register("parallel", rendezvous)
    tasks = [Task(f"t{i}", "parallel", input=i) for i in range(width)]

    result = run_tasks(tasks, registry, max_concurrency=width)

    assert result.ok
    assert result.rounds == 1


def test_max_concurrency_bounds_round_width(registry):
    active = []
    peak = []
    lock = threading.Lock()

    def tracked(input, context):
        with lock:
            active.append(input)
            peak.append(len(active))
        time.sleep(0.02)
        with lock:
            active.remove(input)
        return input

    registry.register("tracked", tracked)
    tasks = [Task(f"t{i}", "tracked", input=i) for i in range(5)]

    result = run_tasks(tasks, registry, max_concurrency=2)

    assert result.ok
    assert result.rounds == 3
    assert max(peak) <= 2


def test_workers_see_context_as_of_dispatch(registry):
    registry.register("peek", lambda input, context: sorted(context))
    tasks = [
        Task("a", "peek"),
        Task("b", "peek"),
        Task("c", "peek", depends_on=["a"]),
    ]

    result = run_tasks(tasks, registry, max_concurrency=None)

    # a and b share round one; neither sees the other.
    assert result.record("a").output == []
    assert result.record("b").output == []
    assert result.record("c").output == ["a", "b"]


def test_runs_are_deterministic(registry):
    def build():
        return [
            Task("A", "echo", input=1),
            Task("B", "fail", depends_on=["A"]),
            Task("C", "echo", depends_on=["A"], input=3),
            Task("D", "echo", depends_on=["B", "C"]),
            Task("E", "merge", depends_on=["C"], input={"from": ["C"]}),
        ]

    first = run_tasks(build(), registry, max_concurrency=2)
    second = run_tasks(build(), registry, max_concurrency=2)

    assert first.states() == second.states()
    assert first.outputs() == second.outputs()


def test_slow_task_times_out_and_cascades(registry):
    release = threading.Event()

    def stuck(input, context):
        release.wait(5)
        return "late"

    registry.register("stuck", stuck)
    tasks = [
        Task("slow", "stuck", timeout_ms=50),
        Task("after", "echo", depends_on=["slow"]),
        Task("fast", "echo", input="fast"),
    ]
    try:
        result = run_tasks(tasks, registry, max_concurrency=None)
    finally:
        release.set()

    slow = result.record("slow")
    assert slow.final_state is TaskState.FAILED
    assert isinstance(slow.error, TaskTimeoutError)
    assert slow.error.timeout_ms == 50
    assert slow.output is None
    assert "slow" not in result.context
    assert result.record("after").final_state is TaskState.SKIPPED
    assert result.record("fast").final_state is TaskState.COMPLETED


def test_default_timeout_comes_from_settings(registry):
    release = threading.Event()
    registry.register("stuck", lambda input, context: release.wait(5))
    try:
        result = run_tasks([Task("slow", "stuck")], registry, per_task_timeout_ms=30)
    finally:
        release.set()

    assert isinstance(result.record("slow").error, TaskTimeoutError)


def test_cancel_lets_round_finish_and_skips_the_rest(registry):
    graph = TaskGraph.build(
        [
            Task("a", "cancel-after"),
            Task("b", "echo", input="b"),
            Task("c", "echo", depends_on=["a"]),
        ]
    )
    scheduler = Scheduler(registry, RunSettings(max_concurrency=1))
    registry.register("cancel-after", lambda input, context: scheduler.cancel() or "done")

    result = scheduler.run(graph)

    assert result.cancelled
    assert result.status is RunStatus.PARTIAL_FAILURE
    assert result.record("a").final_state is TaskState.COMPLETED
    assert result.record("a").output == "done"
    assert result.record("b").skip_reason == "cancelled"
    assert result.record("c").skip_reason == "cancelled"
    assert not scheduler.cancel_requested


def test_listener_sees_every_transition(registry):
    seen = []
    graph = TaskGraph.build([Task("A", "fail"), Task("B", "echo", depends_on=["A"])])

    Scheduler(registry, listener=lambda task: seen.append((task.id, task.state))).run(graph)

    assert seen == [
        ("A", TaskState.READY),
        ("A", TaskState.RUNNING),
        ("A", TaskState.FAILED),
        ("B", TaskState.SKIPPED),
    ]


def test_listener_errors_do_not_change_task_state(registry):
    def broken(task):
        raise RuntimeError("listener bug")

    graph = TaskGraph.build([Task("A", "echo", input=1)])

    result = Scheduler(registry, listener=broken).run(graph)

    assert result.ok


def test_graph_runs_only_once(registry):
    graph = TaskGraph.build([Task("A", "echo")])
    scheduler = Scheduler(registry)
    scheduler.run(graph)

    with pytest.raises(OrchestrationError):
        scheduler.run(graph)


def test_stall_is_fatal(registry, monkeypatch):
    graph = TaskGraph.build([Task("A", "echo")])
    monkeypatch.setattr(graph, "ready_set", lambda: [])

    with pytest.raises(StalledError) as excinfo:
        Scheduler(registry).run(graph)
    assert excinfo.value.blocked == ["A"]


def test_registry_is_frozen_during_run(registry):
    observed = []
    registry.register("probe", lambda input, context: observed.append(registry.frozen))

    run_tasks([Task("A", "probe")], registry)

    assert observed == [True]
    assert not registry.frozen


def test_task_timeout_overrides_shorter_default(registry):
    registry.register("nap", lambda input, context: time.sleep(0.1) or "rested")

    result = run_tasks([Task("a", "nap", timeout_ms=2000)], registry, per_task_timeout_ms=20)

    assert result.record("a").final_state is TaskState.COMPLETED
    assert result.record("a").output == "rested"


def test_task_timeout_overrides_longer_default(registry):
    release = threading.Event()
    registry.register("stuck", lambda input, context: release.wait(5))
    started = time.monotonic()
    try:
        result = run_tasks([Task("a", "stuck", timeout_ms=50)], registry, per_task_timeout_ms=5000)
    finally:
        release.set()

    error = result.record("a").error
    assert isinstance(error, TaskTimeoutError)
    assert error.timeout_ms == 50
    assert time.monotonic() - started < 2


def test_cancel_outside_a_run_is_ignored(registry):
    scheduler = Scheduler(registry, RunSettings(max_concurrency=None))
    scheduler.cancel()

    graph = TaskGraph.build([Task("a", "echo", input=1), Task("b", "echo", depends_on=["a"])])

    result = scheduler.run(graph)

    assert result.status is RunStatus.SUCCESS
    assert not result.cancelled
    assert [record.final_state for record in result.records] == [TaskState.COMPLETED] * 2


def test_cancel_after_a_run_does_not_affect_the_next(registry):
    scheduler = Scheduler(registry)
    scheduler.run(TaskGraph.build([Task("a", "echo")]))
    scheduler.cancel()

    result = scheduler.run(TaskGraph.build([Task("b", "echo", input="b")]))

    assert result.ok
    assert result.record("b").output == "b"


TIMED_OUT_HANDLER_SCRIPT = """
import time
from relay import Task, WorkerRegistry, run_tasks

registry = WorkerRegistry()
registry.register("slow", lambda input, context: time.sleep(30))
result = run_tasks([Task("a", "slow", timeout_ms=50)], registry)
print(result.record("a").final_state.value)
"""


def test_timed_out_handler_does_not_keep_process_alive():
    src = Path(__file__).resolve().parents[1] / "src"
    paths = [str(src), os.environ.get("PYTHONPATH", "")]
    env = dict(os.environ, PYTHONPATH=os.pathsep.join(path for path in paths if path))
    started = time.monotonic()

    completed = subprocess.run(
        [sys.executable, "-c", TIMED_OUT_HANDLER_SCRIPT],
        capture_output=True,
        text=True,
        env=env,
        timeout=20,
    )

    assert completed.returncode == 0, completed.stderr
    assert completed.stdout.strip() == "failed"
    assert time.monotonic() - started < 10
