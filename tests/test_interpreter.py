"""
Tests for the MachineInterpreter: run-to-completion dispatch, invocation
lifecycle, timers and snapshot publication.
"""

import asyncio
import logging

import pytest

from checkout_workflow.domain.exceptions import InterpreterStateError, MachineDefinitionError
from checkout_workflow.domain.models import Invocation, MachineDefinition, StateNode, Transition
from checkout_workflow.execution.interpreter import MachineInterpreter
from checkout_workflow.execution.snapshot_channel import SnapshotChannel
from checkout_workflow.repositories.snapshot import InMemorySnapshotStorage
from checkout_workflow.state.models import MachineSnapshot, MachineStatus


class GatedService:
    """Async service that only resolves once the test opens the gate."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.payloads = []

    async def __call__(self, payload):
        self.payloads.append(payload)
        await self.gate.wait()
        return {"attempt": len(self.payloads)}


async def failing_service(payload):
    raise ValueError("boom")


def build_waiting_machine():
    return MachineDefinition(
        id="waiter",
        initial="waiting",
        context={"result": None, "error": None},
        states={
            "waiting": StateNode(
                invoke=Invocation(
                    id="slow",
                    src="slow",
                    input=lambda ctx: {"n": 1},
                    on_done=[Transition(target="finished", actions=["store_result"])],
                    on_error=[Transition(target="failed", actions=["store_error"])],
                ),
                on={"SKIP": [Transition(target="other")]},
            ),
            "other": StateNode(on={"BACK": [Transition(target="waiting")]}),
            "failed": StateNode(),
            "finished": StateNode(terminal=True, output=lambda ctx: {"result": ctx["result"]}),
        },
        actions={
            "store_result": lambda ctx, event: {"result": event.output},
            "store_error": lambda ctx, event: {"error": event.error},
        },
    )


def build_timed_machine(delay_ms):
    return MachineDefinition(
        id="timed",
        initial="waiting",
        states={
            "waiting": StateNode(
                after={delay_ms: [Transition(target="timed_out")]},
                on={"LEAVE": [Transition(target="left")]},
            ),
            "timed_out": StateNode(),
            "left": StateNode(),
        },
    )


@pytest.fixture
def service():
    return GatedService()


@pytest.fixture
def interpreter(service):
    return MachineInterpreter(build_waiting_machine(), services={"slow": service})


class TestLifecycle:
    def test_send_before_start_raises(self, interpreter):
        with pytest.raises(InterpreterStateError):
            interpreter.send("SKIP")

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, interpreter):
        interpreter.start()
        with pytest.raises(InterpreterStateError):
            interpreter.start()
        interpreter.stop()

    @pytest.mark.asyncio
    async def test_terminal_state_completes_machine(self, interpreter, service):
        outputs = []
        interpreter.on_done(outputs.append)
        interpreter.start()

        service.gate.set()
        snapshot = await interpreter.wait_for_state("finished", timeout=1)

        assert snapshot.status == MachineStatus.DONE
        assert interpreter.done
        assert outputs == [{"result": {"attempt": 1}}]
        assert service.payloads == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_terminal_machine_ignores_events(self, interpreter, service):
        interpreter.start()
        service.gate.set()
        await interpreter.wait_for_state("finished", timeout=1)

        interpreter.send("SKIP")

        assert interpreter.value == "finished"

    @pytest.mark.asyncio
    async def test_stop_ignores_further_events(self, interpreter):
        interpreter.start()
        interpreter.stop()
        interpreter.send("SKIP")

        assert interpreter.status == MachineStatus.STOPPED
        assert interpreter.value == "waiting"
        assert interpreter.invocations.current is None

    @pytest.mark.asyncio
    async def test_reset_returns_to_initial_state(self, interpreter):
        interpreter.start()
        interpreter.send("SKIP")
        assert interpreter.value == "other"

        interpreter.reset()

        assert interpreter.value == "waiting"
        assert interpreter.status == MachineStatus.RUNNING
        assert interpreter.invocations.current.state_path == "waiting"
        interpreter.stop()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unmatched_event_publishes_nothing(self, interpreter):
        interpreter.start()
        snapshots = []
        interpreter.subscribe(snapshots.append)

        interpreter.send("NOPE")

        assert snapshots == []
        assert interpreter.value == "waiting"
        interpreter.stop()

    @pytest.mark.asyncio
    async def test_user_events_cannot_forge_settlements(self, interpreter):
        interpreter.start()
        interpreter.send("done.invoke.slow", output={"forged": True})

        assert interpreter.value == "waiting"
        assert interpreter.context["result"] is None
        interpreter.stop()

    @pytest.mark.asyncio
    async def test_snapshot_is_written_before_next_event(self, interpreter):
        storage = InMemorySnapshotStorage("test")
        SnapshotChannel(storage).attach(interpreter)
        checks = []

        def verify(snapshot):
            stored = MachineSnapshot.model_validate_json(storage.read())
            checks.append((stored.value, stored.context) == (snapshot.value, snapshot.context))

        interpreter.subscribe(verify)
        interpreter.start()
        interpreter.send("SKIP")
        interpreter.send("BACK")

        assert checks == [True, True, True]
        assert MachineSnapshot.model_validate_json(storage.read()).value == "waiting"
        interpreter.stop()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_dispatch(self, interpreter):
        def broken(snapshot):
            raise RuntimeError("listener bug")

        interpreter.subscribe(broken)
        interpreter.start()
        interpreter.send("SKIP")

        assert interpreter.value == "other"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, interpreter):
        snapshots = []
        unsubscribe = interpreter.subscribe(snapshots.append)
        interpreter.start()
        unsubscribe()
        interpreter.send("SKIP")

        assert [s.value for s in snapshots] == ["waiting"]
        interpreter.stop()


class TestInvocations:
    @pytest.mark.asyncio
    async def test_late_settlement_of_exited_state_is_discarded(self, interpreter, service):
        discarded = []
        interpreter.on_discard(lambda event, reason: discarded.append((event.type, reason)))
        interpreter.start()
        handle = interpreter.invocations.current

        interpreter.send("SKIP")
        service.gate.set()
        await handle.task

        assert interpreter.value == "other"
        assert interpreter.context["result"] is None
        assert discarded == [("done.invoke.slow", "stale invocation settlement")]

    @pytest.mark.asyncio
    async def test_reentering_state_only_accepts_newest_handle(self, interpreter, service):
        discarded = []
        interpreter.on_discard(lambda event, reason: discarded.append(event.handle_id))
        interpreter.start()
        first = interpreter.invocations.current

        interpreter.send("SKIP")
        interpreter.send("BACK")
        second = interpreter.invocations.current
        assert second.handle_id != first.handle_id

        service.gate.set()
        await asyncio.gather(first.task, second.task)

        assert discarded == [first.handle_id]
        assert interpreter.value == "finished"

    @pytest.mark.asyncio
    async def test_service_failure_becomes_error_event(self):
        interpreter = MachineInterpreter(build_waiting_machine(), services={"slow": failing_service})
        interpreter.start()

        await interpreter.wait_for_state("failed", timeout=1)

        assert interpreter.context["error"] == "boom"

    @pytest.mark.asyncio
    async def test_missing_service_becomes_error_event(self):
        interpreter = MachineInterpreter(build_waiting_machine(), services={})
        interpreter.start()

        assert interpreter.value == "failed"
        assert interpreter.context["error"] == "No service registered for 'slow'."

    @pytest.mark.asyncio
    async def test_state_left_by_eventless_rule_never_calls_its_service(self, service):
        definition = MachineDefinition(
            id="pass_through",
            initial="idle",
            states={
                "idle": StateNode(on={"GO": [Transition(target="charging")]}),
                "charging": StateNode(
                    invoke=Invocation(id="charge", src="charge"),
                    after={10: [Transition(target="idle")]},
                    always=[Transition(target="skipped")],
                ),
                "skipped": StateNode(),
            },
        )
        interpreter = MachineInterpreter(definition, services={"charge": service})
        interpreter.start()

        interpreter.send("GO")
        await asyncio.sleep(0.05)

        assert interpreter.value == "skipped"
        assert service.payloads == []
        assert interpreter.timers.pending() == []
        interpreter.stop()

    @pytest.mark.asyncio
    async def test_instances_do_not_share_context(self):
        definition = build_waiting_machine()
        definition.context["history"] = []
        first = MachineInterpreter(definition, services={"slow": GatedService()})
        second = MachineInterpreter(definition, services={"slow": GatedService()})
        first.start()
        second.start()

        first.context["history"].append("charged")

        assert second.context["history"] == []
        first.stop()
        second.stop()


class TestTimers:
    @pytest.mark.asyncio
    async def test_delayed_transition_fires(self):
        interpreter = MachineInterpreter(build_timed_machine(10))
        interpreter.start()

        assert interpreter.timers.pending() == ["waiting"]
        await interpreter.wait_for_state("timed_out", timeout=1)
        assert interpreter.timers.pending() == []

    @pytest.mark.asyncio
    async def test_exit_cancels_timer(self):
        interpreter = MachineInterpreter(build_timed_machine(30))
        interpreter.start()

        interpreter.send("LEAVE")
        assert interpreter.timers.pending() == []

        await asyncio.sleep(0.08)
        assert interpreter.value == "left"

    @pytest.mark.asyncio
    async def test_timer_lifecycle_is_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="checkout_workflow.execution.timers")
        interpreter = MachineInterpreter(build_timed_machine(30))
        interpreter.start()

        interpreter.send("LEAVE")

        messages = [r.getMessage() for r in caplog.records if r.name.endswith("timers")]
        assert any(m.endswith("armed for waiting in 30ms") for m in messages)
        assert any(m.endswith("for waiting cancelled") for m in messages)


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_rearms_invocation(self, interpreter, service):
        snapshot = MachineSnapshot(
            machine_id="waiter", value="waiting", context={"result": None, "error": "earlier"}
        )
        interpreter.start(restore=snapshot)

        assert interpreter.context["error"] == "earlier"
        assert interpreter.invocations.current.state_path == "waiting"

        service.gate.set()
        await interpreter.wait_for_state("finished", timeout=1)

    @pytest.mark.asyncio
    async def test_restore_rejects_unknown_state(self, interpreter):
        with pytest.raises(MachineDefinitionError):
            interpreter.start(restore=MachineSnapshot(machine_id="waiter", value="gone"))

    @pytest.mark.asyncio
    async def test_restore_rejects_foreign_snapshot(self, interpreter):
        with pytest.raises(MachineDefinitionError):
            interpreter.start(restore=MachineSnapshot(machine_id="other", value="waiting"))
