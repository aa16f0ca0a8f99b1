from pathlib import Path

import pytest

from relay.config import ProjectConfig, RunSettings
from relay.errors import CycleError, UnknownDependencyError
from relay.orchestrator import Orchestrator
from relay.tasks.base import RunStatus, TaskState

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "configs" / "feature_delivery.yaml"


def test_orchestrator_initialization():
    config_yaml = """
name: test-project
tasks:
  - id: test-task
    capability: echo
    input: hello
"""
    config = ProjectConfig.from_yaml(config_yaml)
    orchestrator = Orchestrator(config)

    assert orchestrator.config.name == "test-project"
    assert "echo" in orchestrator.registry
    assert len(orchestrator.tasks) == 1
    assert orchestrator.tasks[0].id == "test-task"


def test_example_project_runs_end_to_end():
    orchestrator = Orchestrator(ProjectConfig.from_file(EXAMPLE))

    assert orchestrator.plan() == [
        ["plan"],
        ["design"],
        ["schema", "ui"],
        ["api"],
        ["review", "tests"],
        ["release"],
    ]
    result = orchestrator.run()

    assert result.status is RunStatus.SUCCESS
    assert result.record("design").output["role"] == "Architect"
    assert set(result.record("api").output["upstream"]) == {"design", "schema"}
    assert result.record("release").output.startswith("## Handoff from DevOps Engineer")
    assert list(result.context)[-1] == "release"


def test_orchestrator_can_run_again_with_fresh_graph():
    config = ProjectConfig.from_yaml(
        "tasks:\n  - capability: echo\n    input: 1\n  - capability: fail\n"
    )
    orchestrator = Orchestrator(config)

    first = orchestrator.run()
    second = orchestrator.run()

    assert first.states() == second.states()
    assert sorted(state.value for state in first.states().values()) == ["completed", "failed"]


def test_settings_override_config():
    config = ProjectConfig.from_yaml("tasks: [{id: a, capability: echo}, {id: b, capability: echo}]")
    orchestrator = Orchestrator(config, settings=RunSettings(max_concurrency=None))

    result = orchestrator.run()

    assert result.rounds == 1
    assert result.record("b").final_state is TaskState.COMPLETED


def test_invalid_graphs_fail_before_running():
    with pytest.raises(CycleError):
        Orchestrator(
            ProjectConfig.from_yaml(
                "tasks: [{id: a, capability: echo, depends_on: [b]}, {id: b, capability: echo, depends_on: [a]}]"
            )
        )
    with pytest.raises(UnknownDependencyError):
        Orchestrator(ProjectConfig.from_yaml("tasks: [{id: a, capability: echo, depends_on: [Z]}]"))
