# tests/test_manager.py

from __future__ import annotations

import asyncio
import logging

import pytest

from conductor_worker.config import EnvSource, PollingOptions
from conductor_worker.core.errors import ConductorAPIError, ConfigurationError, NonRetryableError
from conductor_worker.tasks.manager import TaskManager
from conductor_worker.tasks.task_models import TaskDef, TaskOutput, TaskResultStatus
from conductor_worker.tasks.task_scheduler import SchedulerState
from conductor_worker.tasks.worker import FunctionWorker, worker_task

from .fakes import FakeTaskClient, RecordingListener, make_task, wait_until


def _ok(task):
    return TaskOutput(output_data={"hello": "From your worker"})


@pytest.mark.asyncio
async def test_empty_worker_list_fails(client: FakeTaskClient, env: EnvSource) -> None:
    with pytest.raises(ConfigurationError, match="^No workers supplied to TaskManager$"):
        manager = TaskManager(client, [], env=env)
        await manager.start_polling()


@pytest.mark.asyncio
async def test_duplicate_task_type_fails(client: FakeTaskClient, env: EnvSource) -> None:
    workers = [FunctionWorker("worker-name", _ok), FunctionWorker("worker-name", _ok)]

    with pytest.raises(ConfigurationError, match="^Duplicate worker taskDefName: worker-name$"):
        manager = TaskManager(client, workers, env=env)
        await manager.start_polling()


@pytest.mark.asyncio
async def test_is_polling_follows_lifecycle(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], {"poll_interval": 5}, env=env)
    assert not manager.is_polling

    await manager.start_polling()
    assert manager.is_polling

    await manager.stop_polling()
    assert not manager.is_polling


@pytest.mark.asyncio
async def test_second_start_is_a_no_op(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok)], {"poll_interval": 5}, env=env)

    await manager.start_polling()
    loop_task = manager.schedulers["a"]._loop_task
    await manager.start_polling()

    assert manager.schedulers["a"]._loop_task is loop_task
    assert manager.is_polling
    await manager.stop_polling()
    assert not manager.is_polling


@pytest.mark.asyncio
async def test_manager_runs_workers_end_to_end(client: FakeTaskClient, env: EnvSource) -> None:
    client.enqueue(make_task(1, task_type="a"), make_task(2, task_type="b"))
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], {"poll_interval": 5}, env=env)

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 2)
    await manager.stop_polling()

    assert {r.task_id for r in client.updates} == {"task-1", "task-2"}
    assert all(r.output_data == {"hello": "From your worker"} for r in client.updates)


@pytest.mark.asyncio
async def test_terminal_and_retryable_failures_are_reported(client: FakeTaskClient, env: EnvSource) -> None:
    errors: list[BaseException] = []

    async def terminal(task):
        raise NonRetryableError("invalid order")

    async def flaky(task):
        raise RuntimeError("This is a forced error")

    client.enqueue(make_task(1, task_type="terminal"), make_task(2, task_type="flaky"))
    manager = TaskManager(
        client,
        [FunctionWorker("terminal", terminal), FunctionWorker("flaky", flaky)],
        {"poll_interval": 5},
        env=env,
        on_error=lambda error, task: errors.append(error),
    )

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 2)
    await manager.stop_polling()

    statuses = {r.task_id: r.status for r in client.updates}
    assert statuses == {
        "task-1": TaskResultStatus.FAILED_WITH_TERMINAL_ERROR,
        "task-2": TaskResultStatus.FAILED,
    }
    assert len(errors) == 2
    assert sum(isinstance(e, RuntimeError) for e in errors) == 1


@pytest.mark.asyncio
async def test_failure_without_error_hook_is_still_reported(client: FakeTaskClient, env: EnvSource) -> None:
    client.enqueue(make_task(1))
    manager = TaskManager(client, [FunctionWorker("test_worker", lambda task: 1 / 0)], {"poll_interval": 5}, env=env)

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 1)
    await manager.stop_polling()

    assert client.updates[0].status is TaskResultStatus.FAILED
    assert len(client.polls) >= 1


def test_update_polling_options_after_worker_update(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], env=env)

    manager.update_polling_option_for_worker("a", {"concurrency": 5, "poll_interval": 50})
    manager.update_polling_options({"pollInterval": 500, "concurrency": 1})

    assert manager.options.concurrency == 1
    assert manager.options.poll_interval == 500


def test_worker_overrides_survive_manager_wide_update(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], env=env)

    manager.update_polling_option_for_worker("a", {"concurrency": 5})
    manager.update_polling_options(PollingOptions(concurrency=2, poll_interval=300))

    assert manager.worker_config("a").concurrency == 5
    assert manager.worker_config("a").poll_interval == 300
    assert manager.worker_config("b").concurrency == 2


def test_worker_update_leaves_others_untouched(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], {"concurrency": 2}, env=env)
    before_options = manager.options
    before_b = manager.worker_config("b")

    manager.update_polling_option_for_worker("a", {"concurrency": 8, "domain": "blue"})

    assert manager.worker_config("a").concurrency == 8
    assert manager.worker_config("a").domain == "blue"
    assert manager.worker_config("b") is before_b
    assert manager.options == before_options


def test_update_logs_configuration_change(
        client: FakeTaskClient, env: EnvSource, caplog: pytest.LogCaptureFixture
) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok)], env=env)

    with caplog.at_level(logging.INFO):
        manager.update_polling_option_for_worker("a", {"concurrency": 3, "poll_interval": 750})

    assert "TaskWorker a configuration updated with concurrency of 3 and poll interval of 750" in caplog.messages


def test_unknown_worker_update_fails(client: FakeTaskClient, env: EnvSource) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok)], env=env)

    with pytest.raises(ConfigurationError, match="nope"):
        manager.update_polling_option_for_worker("nope", {"concurrency": 2})


def test_environment_wins_over_code(client: FakeTaskClient) -> None:
    env = EnvSource(
        {
            "CONDUCTOR_WORKER_ALL_POLL_INTERVAL": "500",
            "CONDUCTOR_WORKER_TEST_WORKER_POLL_INTERVAL": "2000",
        }
    )
    worker = worker_task("test_worker", poll_interval=1000)(_ok)
    manager = TaskManager(client, [worker, FunctionWorker("other", _ok)], {"poll_interval": 50}, env=env)

    assert manager.worker_config("test_worker").poll_interval == 2000
    assert manager.worker_config("other").poll_interval == 500
    assert manager.options.poll_interval == 50


@pytest.mark.asyncio
async def test_task_definitions_registered_when_enabled(client: FakeTaskClient, env: EnvSource) -> None:
    custom = TaskDef(name="a", retry_count=0, description="custom")
    workers = [
        FunctionWorker("a", _ok, task_def=custom),
        FunctionWorker("b", _ok, options=PollingOptions(register_task_def=False)),
    ]
    manager = TaskManager(
        client,
        workers,
        {"register_task_def": True, "overwrite_task_def": False, "strict_schema": True, "poll_interval": 5},
        env=env,
    )

    await manager.start_polling()
    await manager.stop_polling()

    assert len(client.registered) == 1
    defs, overwrite = client.registered[0]
    assert overwrite is False
    assert defs[0].name == "a"
    assert defs[0].description == "custom"
    assert defs[0].enforce_schema is True


@pytest.mark.asyncio
async def test_registration_failure_is_not_fatal(client: FakeTaskClient, env: EnvSource) -> None:
    client.register_errors.append(ConductorAPIError("forbidden", status_code=403))
    manager = TaskManager(client, [FunctionWorker("a", _ok)], {"register_task_def": True, "poll_interval": 5}, env=env)

    await manager.start_polling()
    assert manager.is_polling
    await manager.stop_polling()


@pytest.mark.asyncio
async def test_listeners_receive_lifecycle_events(client: FakeTaskClient, env: EnvSource) -> None:
    listener = RecordingListener()
    client.enqueue(make_task(1))
    manager = TaskManager(
        client,
        [FunctionWorker("test_worker", _ok)],
        {"poll_interval": 5},
        env=env,
        event_listeners=[listener],
    )

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 1)
    await manager.stop_polling()

    names = listener.names()
    assert {"poll_started", "poll_completed", "execution_started", "execution_completed"} <= set(names)
    assert names.index("execution_started") < names.index("execution_completed")


@pytest.mark.asyncio
async def test_stop_waits_for_slow_workers(client: FakeTaskClient, env: EnvSource) -> None:
    release = asyncio.Event()

    async def slow(task):
        await release.wait()
        return {}

    client.enqueue(make_task(1, task_type="slow"))
    manager = TaskManager(client, [FunctionWorker("slow", slow)], {"poll_interval": 5}, env=env)

    await manager.start_polling()
    await wait_until(lambda: manager.schedulers["slow"].in_flight == 1)
    stopping = asyncio.create_task(manager.stop_polling())
    await asyncio.sleep(0.02)

    assert not stopping.done()
    assert not manager.is_polling

    release.set()
    await stopping
    assert [r.task_id for r in client.updates] == ["task-1"]


@pytest.mark.asyncio
async def test_output_without_data_is_still_reported(client: FakeTaskClient, env: EnvSource) -> None:
    client.enqueue(make_task(1))
    manager = TaskManager(
        client, [FunctionWorker("test_worker", lambda task: TaskOutput(output_data=None))], {"poll_interval": 5}, env=env
    )

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 1)
    await manager.stop_polling()

    assert client.updates[0].status is TaskResultStatus.COMPLETED
    assert client.updates[0].output_data == {}


@pytest.mark.asyncio
async def test_start_while_stop_is_draining_resumes_polling(client: FakeTaskClient, env: EnvSource) -> None:
    release = asyncio.Event()

    async def slow(task):
        await release.wait()
        return {}

    client.enqueue(make_task(1, task_type="slow"))
    manager = TaskManager(client, [FunctionWorker("slow", slow)], {"poll_interval": 5}, env=env)

    await manager.start_polling()
    await wait_until(lambda: manager.schedulers["slow"].in_flight == 1)
    stopping = asyncio.create_task(manager.stop_polling())
    await wait_until(lambda: manager.schedulers["slow"].state is SchedulerState.STOPPING)
    starting = asyncio.create_task(manager.start_polling())
    await asyncio.sleep(0.02)
    assert not starting.done()

    release.set()
    await starting
    await stopping
    assert manager.is_polling

    client.enqueue(make_task(2, task_type="slow"))
    await wait_until(lambda: len(client.updates) == 2)
    await manager.stop_polling()
    assert [r.task_id for r in client.updates] == ["task-1", "task-2"]


def test_manager_wide_update_does_not_log_per_worker_line(
        client: FakeTaskClient, env: EnvSource, caplog: pytest.LogCaptureFixture
) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok), FunctionWorker("b", _ok)], env=env)

    with caplog.at_level(logging.INFO):
        manager.update_polling_options({"concurrency": 3})

    assert manager.worker_config("a").concurrency == 3
    assert not any("configuration updated" in m for m in caplog.messages)


def test_unchanged_worker_update_is_silent(
        client: FakeTaskClient, env: EnvSource, caplog: pytest.LogCaptureFixture
) -> None:
    manager = TaskManager(client, [FunctionWorker("a", _ok)], {"concurrency": 2}, env=env)

    with caplog.at_level(logging.INFO):
        manager.update_polling_option_for_worker("a", {"concurrency": 2})

    assert caplog.messages == []


@pytest.mark.asyncio
async def test_from_registered_discovers_declared_workers(client: FakeTaskClient, env: EnvSource) -> None:
    @worker_task("declared", concurrency=2, overwrite_task_def=False, strict_schema=True, register_task_def=True)
    def declared(task):
        return {"from": "declared"}

    client.enqueue(make_task(1, task_type="declared"), make_task(2, task_type="manual"))
    manager = TaskManager.from_registered(client, [FunctionWorker("manual", _ok)], {"poll_interval": 5}, env=env)

    assert set(manager.workers) == {"declared", "manual"}
    config = manager.worker_config("declared")
    assert config.concurrency == 2
    assert config.overwrite_task_def is False
    assert config.strict_schema is True

    await manager.start_polling()
    await wait_until(lambda: len(client.updates) == 2)
    await manager.stop_polling()

    defs, overwrite = client.registered[0]
    assert [d.name for d in defs] == ["declared"]
    assert overwrite is False
    assert defs[0].enforce_schema is True


def test_from_registered_with_nothing_declared_fails(client: FakeTaskClient, env: EnvSource) -> None:
    with pytest.raises(ConfigurationError, match="^No workers supplied to TaskManager$"):
        TaskManager.from_registered(client, env=env)
