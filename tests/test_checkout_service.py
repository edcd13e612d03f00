"""
Tests for the CheckoutService (sessions, persistence and resume)
"""

from functools import partial

import pytest

from checkout_workflow.machines.checkout import INITIAL_CONTEXT
from checkout_workflow.repositories.snapshot import create_snapshot_storage
from checkout_workflow.services.checkout import CheckoutService
from checkout_workflow.services.exceptions import SessionNotFoundError, UnknownMachineError
from checkout_workflow.state.models import MachineSnapshot


@pytest.fixture
def shared_store():
    return {}


@pytest.fixture
def storage_factory(shared_store):
    return partial(create_snapshot_storage, backend="memory", store=shared_store)


@pytest.fixture
def service(machine_repository, services, storage_factory):
    service = CheckoutService(machine_repository, services, storage_factory)
    yield service
    service.shutdown()


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_session_starts_machine(self, service):
        session = service.create_session("checkout")

        assert session.machine_id == "checkout"
        assert service.get_snapshot(session.session_id).value == "loading_products"

        await session.interpreter.wait_for_state("product_selection", timeout=1)
        assert service.get_snapshot(session.session_id).value == "product_selection"

    def test_list_machines(self, service):
        assert service.list_machines() == ["checkout", "fulfillment", "payment"]

    def test_unknown_machine(self, service):
        with pytest.raises(UnknownMachineError):
            service.create_session("shipping")

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, service):
        first = service.create_session()
        second = service.create_session()
        await first.interpreter.wait_for_state("product_selection", timeout=1)
        await second.interpreter.wait_for_state("product_selection", timeout=1)

        service.send_event(first.session_id, "PROCEED_TO_SHIPPING")

        assert service.get_snapshot(first.session_id).value == "checkout.shipping_address"
        assert service.get_snapshot(second.session_id).value == "product_selection"

    @pytest.mark.asyncio
    async def test_send_event_returns_new_snapshot(self, service):
        session = service.create_session()
        await session.interpreter.wait_for_state("product_selection", timeout=1)

        snapshot = service.send_event(session.session_id, "REMOVE_ITEM", {"item_id": 1})

        assert [i["id"] for i in snapshot.context["selected_items"]] == [2]

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFoundError):
            service.send_event("missing", "RETRY")
        with pytest.raises(SessionNotFoundError):
            service.get_snapshot("missing")

    @pytest.mark.asyncio
    async def test_every_transition_is_persisted(self, service, storage_factory):
        session = service.create_session()
        await session.interpreter.wait_for_state("product_selection", timeout=1)
        service.send_event(session.session_id, "PROCEED_TO_SHIPPING")

        blob = storage_factory(service._storage_key(session.session_id)).read()

        assert MachineSnapshot.model_validate_json(blob).value == "checkout.shipping_address"

    @pytest.mark.asyncio
    async def test_delete_session(self, service, storage_factory):
        session = service.create_session()

        assert service.delete_session(session.session_id)
        assert not storage_factory(service._storage_key(session.session_id)).exists()
        assert not service.delete_session(session.session_id)
        with pytest.raises(SessionNotFoundError):
            service.get_snapshot(session.session_id)

    @pytest.mark.asyncio
    async def test_discarded_results_are_recorded_on_the_session(self, service):
        session = service.create_session()
        await session.interpreter.wait_for_state("product_selection", timeout=1)
        service.send_event(session.session_id, "PROCEED_TO_SHIPPING")
        service.send_event(session.session_id, "SUBMIT_SHIPPING", {"shipping_data": {"zip": "12345"}})
        handle = session.interpreter.invocations.current

        service.send_event(session.session_id, "CANCEL_CHECKOUT")
        await handle.task

        assert session.discarded == ["done.invoke.validate_shipping"]
        assert service.get_snapshot(session.session_id).value == "product_selection"


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_in_new_process(self, service, machine_repository, services, storage_factory):
        session = service.create_session()
        await session.interpreter.wait_for_state("product_selection", timeout=1)
        service.send_event(session.session_id, "PROCEED_TO_SHIPPING")
        service.shutdown()

        restarted = CheckoutService(machine_repository, services, storage_factory)
        # Not running yet, but the stored snapshot is visible.
        assert restarted.get_snapshot(session.session_id).value == "checkout.shipping_address"

        resumed = restarted.resume_session(session.session_id)

        assert resumed.interpreter.value == "checkout.shipping_address"
        assert len(resumed.interpreter.context["selected_items"]) == 2
        restarted.send_event(session.session_id, "BACK_TO_CART")
        assert restarted.get_snapshot(session.session_id).value == "product_selection"
        restarted.shutdown()

    @pytest.mark.asyncio
    async def test_resume_restarts_outstanding_invocation(self, service, storage_factory):
        session_id = "crashed-session"
        storage = storage_factory(service._storage_key(session_id))
        storage.write(MachineSnapshot(machine_id="checkout", value="loading_products", context=INITIAL_CONTEXT).model_dump_json())

        resumed = service.resume_session(session_id)

        await resumed.interpreter.wait_for_state("product_selection", timeout=1)
        assert len(resumed.interpreter.context["products"]) == 4

    def test_resume_without_snapshot(self, service):
        with pytest.raises(SessionNotFoundError):
            service.resume_session("never-saved")
