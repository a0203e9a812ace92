"""Checkout conversations for both roles."""

import logging
from datetime import datetime, timezone

import pytest

from conftest import (
    ADMIN_CHAT,
    ADMIN_OPERATOR,
    admin_assign,
    all_journeys,
    assert_fleet_consistent,
)
from fleetbot.errors import (
    ConflictingAssignment,
    NoAssigneesAvailable,
    NotAuthenticated,
    NoVehiclesAvailable,
    RecordNotFound,
    VehicleAlreadyHeld,
)
from fleetbot.models import VehicleStatus
from fleetbot.sessions import Role, WorkflowState


class TestAdminAssignment:
    @pytest.mark.asyncio
    async def test_assign_van_to_alice_for_clinic(self, admin, fleet, store, engine, sessions, channels):
        prompt = admin.assignment.begin(ADMIN_OPERATOR)
        assert prompt.state == WorkflowState.selecting_vehicle
        assert [o.value for o in prompt.options] == ["Van1", "Van2"]

        prompt = admin.assignment.select_vehicle(ADMIN_OPERATOR, "Van1")
        assert prompt.state == WorkflowState.selecting_assignee
        assert [o.label for o in prompt.options] == ["Alice", "Bob", "Carol"]

        prompt = admin.assignment.select_assignee(ADMIN_OPERATOR, fleet.alice.id)
        assert prompt.state == WorkflowState.selecting_destination
        assert [o.value for o in prompt.options] == ["Clinic", "Depot", "Warehouse"]

        result = await admin.assignment.select_destination(ADMIN_OPERATOR, "Clinic")

        assert result.assigned_at == datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        van = store.get_vehicle("Van1")
        assert van.status == VehicleStatus.in_use
        assert van.current_employee == "Alice"
        assert van.assigned_user_id == fleet.alice.id
        assert van.current_destination == "Clinic"
        assert van.journey_id == result.journey_id

        [journey] = all_journeys(engine)
        assert (journey.user_id, journey.vehicle_name, journey.destination) == (fleet.alice.id, "Van1", "Clinic")
        assert journey.returned_at is None
        assert journey.total_time is None

        assert sessions.get(Role.administrator, ADMIN_OPERATOR) is None
        assert len(channels.users.sent) == 1
        assert channels.users.sent[0][0] == 111
        assert "Van1" in channels.users.sent[0][1]
        assert result.warnings == []
        assert_fleet_consistent(store)

    @pytest.mark.asyncio
    async def test_assigned_vehicle_and_destination_drop_out_of_listings(self, admin, fleet):
        await admin_assign(admin, "Van1", fleet.alice, "Clinic")

        prompt = admin.assignment.begin(ADMIN_OPERATOR)
        assert [o.value for o in prompt.options] == ["Van2"]
        prompt = admin.assignment.select_vehicle(ADMIN_OPERATOR, "Van2")
        assert fleet.alice.id not in [o.value for o in prompt.options]
        prompt = admin.assignment.select_assignee(ADMIN_OPERATOR, fleet.bob.id)
        assert "Clinic" not in [o.value for o in prompt.options]

    @pytest.mark.asyncio
    async def test_no_vehicles_available(self, admin, fleet):
        await admin_assign(admin, "Van1", fleet.alice, "Clinic")
        await admin_assign(admin, "Van2", fleet.bob, "Depot")

        with pytest.raises(NoVehiclesAvailable):
            admin.assignment.begin(ADMIN_OPERATOR)

    @pytest.mark.asyncio
    async def test_no_assignees_keeps_session_for_retry(self, admin, fleet, store, sessions):
        store.add_vehicle("Van3")
        store.add_vehicle("Van4")
        await admin_assign(admin, "Van1", fleet.alice, "Clinic")
        await admin_assign(admin, "Van2", fleet.bob, "Depot")
        await admin_assign(admin, "Van3", fleet.carol, "Warehouse")

        admin.assignment.begin(ADMIN_OPERATOR)
        with pytest.raises(NoAssigneesAvailable):
            admin.assignment.select_vehicle(ADMIN_OPERATOR, "Van4")

        session = sessions.get(Role.administrator, ADMIN_OPERATOR)
        assert session.state == WorkflowState.selecting_vehicle

    @pytest.mark.asyncio
    async def test_second_operator_loses_race_for_vehicle(self, admin, fleet, store, engine, sessions):
        for operator in (1, 2):
            admin.assignment.begin(operator)
            admin.assignment.select_vehicle(operator, "Van1")
        admin.assignment.select_assignee(1, fleet.alice.id)
        admin.assignment.select_assignee(2, fleet.bob.id)

        await admin.assignment.select_destination(1, "Clinic")
        with pytest.raises(ConflictingAssignment):
            await admin.assignment.select_destination(2, "Depot")

        van = store.get_vehicle("Van1")
        assert van.assigned_user_id == fleet.alice.id
        assert van.current_destination == "Clinic"
        assert len(all_journeys(engine)) == 1
        assert sessions.get(Role.administrator, 2) is None
        assert_fleet_consistent(store)

    @pytest.mark.asyncio
    async def test_second_operator_loses_race_for_assignee(self, admin, fleet, store, engine, sessions):
        admin.assignment.begin(1)
        admin.assignment.select_vehicle(1, "Van1")
        admin.assignment.begin(2)
        admin.assignment.select_vehicle(2, "Van2")
        admin.assignment.select_assignee(1, fleet.alice.id)
        admin.assignment.select_assignee(2, fleet.alice.id)

        await admin.assignment.select_destination(1, "Clinic")
        with pytest.raises(ConflictingAssignment) as exc_info:
            await admin.assignment.select_destination(2, "Depot")

        assert "Alice" in exc_info.value.message
        van2 = store.get_vehicle("Van2")
        assert van2.status == VehicleStatus.available
        assert van2.assigned_user_id is None
        assert len(all_journeys(engine)) == 1
        assert sessions.get(Role.administrator, 2) is None
        assert_fleet_consistent(store)

    @pytest.mark.asyncio
    async def test_assignee_already_holding_vehicle_is_rejected(self, admin, fleet, store, sessions):
        await admin_assign(admin, "Van1", fleet.alice, "Clinic")

        admin.assignment.begin(ADMIN_OPERATOR)
        admin.assignment.select_vehicle(ADMIN_OPERATOR, "Van2")
        with pytest.raises(ConflictingAssignment):
            admin.assignment.select_assignee(ADMIN_OPERATOR, fleet.alice.id)

        assert store.get_vehicle("Van2").status == VehicleStatus.available
        assert sessions.get(Role.administrator, ADMIN_OPERATOR) is None

    @pytest.mark.asyncio
    async def test_proxy_user_is_not_notified(self, admin, fleet, channels):
        result = await admin_assign(admin, "Van1", fleet.carol, "Clinic")

        assert result.notified is None
        assert result.warnings == []
        assert channels.users.sent == []

    @pytest.mark.asyncio
    async def test_failed_notification_becomes_warning(self, admin, fleet, store, channels, caplog):
        channels.users.ok = False

        with caplog.at_level(logging.WARNING):
            result = await admin_assign(admin, "Van1", fleet.alice, "Clinic")

        assert "ERR_NOTIFY" in caplog.text
        assert result.notified is False
        assert result.warnings == ["Failed to send notification to the user."]
        assert store.get_vehicle("Van1").status == VehicleStatus.in_use

    @pytest.mark.asyncio
    async def test_commit_without_session_is_rejected(self, admin, fleet, store):
        with pytest.raises(RecordNotFound):
            await admin.assignment.select_destination(ADMIN_OPERATOR, "Clinic")
        assert store.get_vehicle("Van1").status == VehicleStatus.available

    def test_out_of_order_step_clears_session(self, admin, fleet, sessions):
        admin.assignment.begin(ADMIN_OPERATOR)
        with pytest.raises(RecordNotFound):
            admin.assignment.select_assignee(ADMIN_OPERATOR, fleet.alice.id)
        assert sessions.get(Role.administrator, ADMIN_OPERATOR) is None

    @pytest.mark.asyncio
    async def test_unknown_destination_is_rejected(self, admin, fleet, store, sessions):
        admin.assignment.begin(ADMIN_OPERATOR)
        admin.assignment.select_vehicle(ADMIN_OPERATOR, "Van1")
        admin.assignment.select_assignee(ADMIN_OPERATOR, fleet.alice.id)

        with pytest.raises(RecordNotFound):
            await admin.assignment.select_destination(ADMIN_OPERATOR, "Moon")

        assert store.get_vehicle("Van1").status == VehicleStatus.available
        assert sessions.get(Role.administrator, ADMIN_OPERATOR) is None


class TestSelfServiceAssignment:
    @pytest.mark.asyncio
    async def test_caller_is_the_assignee(self, employee, fleet, store, channels):
        employee.assignment.begin(111)
        prompt = employee.assignment.select_vehicle(111, "Van2")
        assert prompt.state == WorkflowState.selecting_destination
        assert "Alice" in prompt.text

        result = await employee.assignment.select_destination(111, "Depot")

        assert result.assignee_name == "Alice"
        van = store.get_vehicle("Van2")
        assert van.assigned_user_id == fleet.alice.id
        assert channels.admins.sent[0][0] == ADMIN_CHAT
        assert "Van2" in channels.admins.sent[0][1]
        assert channels.users.sent == []

    def test_unknown_operator(self, employee, fleet):
        with pytest.raises(NotAuthenticated):
            employee.assignment.begin(555)

    @pytest.mark.asyncio
    async def test_one_vehicle_per_user_at_entry(self, employee, fleet, sessions):
        employee.assignment.begin(111)
        employee.assignment.select_vehicle(111, "Van1")
        await employee.assignment.select_destination(111, "Clinic")

        with pytest.raises(VehicleAlreadyHeld) as exc_info:
            employee.assignment.begin(111)

        assert exc_info.value.vehicle_name == "Van1"
        assert sessions.get(Role.self_service, 111) is None

    @pytest.mark.asyncio
    async def test_admin_and_employee_race_for_same_vehicle(self, admin, employee, fleet, store, engine):
        employee.assignment.begin(111)
        employee.assignment.select_vehicle(111, "Van1")

        await admin_assign(admin, "Van1", fleet.bob, "Depot")

        with pytest.raises(ConflictingAssignment):
            await employee.assignment.select_destination(111, "Clinic")

        assert store.get_vehicle("Van1").assigned_user_id == fleet.bob.id
        assert len(all_journeys(engine)) == 1
        assert_fleet_consistent(store)

    def test_employee_cannot_pick_assignee(self, employee, fleet):
        employee.assignment.begin(111)
        with pytest.raises(RecordNotFound):
            employee.assignment.select_assignee(111, fleet.bob.id)
