"""
Checkout and return conversations.

One engine serves both bots; ``Role`` decides which steps exist:

  self-service   begin -> vehicle -> destination -> commit (assignee = caller)
  administrator  begin -> vehicle -> assignee -> destination -> commit

Each step gets the operator's session plus one new choice and returns either
the next ``Prompt`` or, at the last step, a committed result. Nothing a
prompt lists is reserved: availability is decided again at commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .errors import (
    ConflictingAssignment,
    NoAssigneesAvailable,
    NoDestinationsAvailable,
    NotAuthenticated,
    NoVehiclesAvailable,
    NoVehiclesInUse,
    NotificationFailed,
    RecordNotFound,
    VehicleAlreadyHeld,
)
from .journeys import Elapsed, JourneyQuery
from .logger import get_logger
from .models import User, Vehicle, VehicleStatus, utcnow
from .notify import Notifier
from .sessions import Role, SessionStore, WorkflowSession, WorkflowState
from .store import FleetStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class Option:
    label: str
    value: str | int


@dataclass
class Prompt:
    state: WorkflowState
    text: str
    options: list[Option]


@dataclass
class AssignmentResult:
    vehicle_name: str
    assignee_name: str
    destination: str
    assigned_at: datetime
    journey_id: int
    notified: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ReturnResult:
    vehicle_name: str
    employee: str
    destination: str
    assigned_at: datetime
    returned_at: datetime
    elapsed: Elapsed
    journey_closed: bool
    notified: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)


def _authenticate(store: FleetStore, operator_id: int) -> User:
    user = store.get_user_by_telegram_id(operator_id)
    if user is None:
        raise NotAuthenticated()
    return user


def _notification_warning(role: Role, message: str) -> str:
    # Результат уже записан, поэтому ошибку не бросаем, а отдаём предупреждением
    failure = NotificationFailed(message)
    logger.warning(f"[{role.value}] {failure.error_code}: {failure.message}")
    return failure.message


class AssignmentWorkflow:
    def __init__(
        self,
        role: Role,
        store: FleetStore,
        sessions: SessionStore,
        notifier: Notifier,
        clock=utcnow,
    ):
        self.role = role
        self.store = store
        self.sessions = sessions
        self.notifier = notifier
        self.clock = clock

    @property
    def is_admin(self) -> bool:
        return self.role == Role.administrator

    def _session_in(self, operator_id: int, state: WorkflowState) -> WorkflowSession:
        session = self.sessions.get(self.role, operator_id)
        if session is None or session.state != state:
            self.sessions.clear(self.role, operator_id)
            raise RecordNotFound("This selection has expired. Please start the assignment again.")
        return session

    # ---------------------------- Steps ----------------------------

    def begin(self, operator_id: int) -> Prompt:
        caller: User | None = None
        if not self.is_admin:
            caller = _authenticate(self.store, operator_id)
            held = self.store.held_vehicle(caller.id)
            if held is not None:
                raise VehicleAlreadyHeld(held.name)

        vehicles = self.store.list_vehicles(VehicleStatus.available)
        if not vehicles:
            raise NoVehiclesAvailable()

        session = self.sessions.open(self.role, operator_id)
        session.set("state", WorkflowState.selecting_vehicle)
        if caller is not None:
            session.set("assignee_id", caller.id)
            session.set("assignee_name", caller.name)
            session.set("assignee_telegram_id", caller.telegram_id)

        return Prompt(
            WorkflowState.selecting_vehicle,
            "Select a vehicle:",
            [Option(v.name, v.name) for v in vehicles],
        )

    def select_vehicle(self, operator_id: int, vehicle_name: str) -> Prompt:
        session = self._session_in(operator_id, WorkflowState.selecting_vehicle)

        if self.is_admin:
            users = self.store.list_users(unassigned_only=True)
            if not users:
                raise NoAssigneesAvailable()
            session.set("vehicle_name", vehicle_name)
            session.set("state", WorkflowState.selecting_assignee)
            return Prompt(
                WorkflowState.selecting_assignee,
                f"Vehicle {vehicle_name} selected. Select the employee:",
                [Option(u.name, u.id) for u in users],
            )

        options = self._destination_options()
        session.set("vehicle_name", vehicle_name)
        session.set("state", WorkflowState.selecting_destination)
        return Prompt(
            WorkflowState.selecting_destination,
            f"User {session.assignee_name} selected. Now select the destination:",
            options,
        )

    def select_assignee(self, operator_id: int, user_id: int) -> Prompt:
        if not self.is_admin:
            raise RecordNotFound("Only an administrator can choose the employee.")
        session = self._session_in(operator_id, WorkflowState.selecting_assignee)

        user = self.store.get_user(user_id)
        if user is None:
            self.sessions.clear(self.role, operator_id)
            raise RecordNotFound("Employee not found. Please start the assignment again.")

        held = self.store.held_vehicle(user.id)
        if held is not None:
            raise self._conflict(
                operator_id,
                session.vehicle_name,
                f'⚠️ The user "{user.name}" already has a vehicle assigned. '
                "Please select a different user.",
            )

        options = self._destination_options()
        session.set("assignee_id", user.id)
        session.set("assignee_name", user.name)
        session.set("assignee_telegram_id", user.telegram_id)
        session.set("state", WorkflowState.selecting_destination)
        return Prompt(
            WorkflowState.selecting_destination,
            f"Employee {user.name} selected. Now select the destination:",
            options,
        )

    async def select_destination(self, operator_id: int, destination: str) -> AssignmentResult:
        session = self._session_in(operator_id, WorkflowState.selecting_destination)
        session.set("state", WorkflowState.committing)
        # Шаг последний: дальше сессия не нужна при любом исходе
        vehicle_name = session.vehicle_name
        assignee_id = session.assignee_id
        self.sessions.clear(self.role, operator_id)

        if not vehicle_name or assignee_id is None:
            raise RecordNotFound("An error occurred. Missing information. Please try again.")

        user = self.store.get_user(assignee_id)
        if user is None:
            raise RecordNotFound("Error: User not found in the database.")
        if self.store.get_destination(destination) is None:
            raise RecordNotFound(f'Destination "{destination}" not found.')

        now = self.clock()
        try:
            journey = self.store.assign_vehicle(vehicle_name, user, destination, now)
        except ConflictingAssignment as exc:
            raise self._conflict(operator_id, vehicle_name, exc.message) from exc

        logger.info(
            f"[{self.role.value}] operator={operator_id} assigned {vehicle_name} "
            f"to user_id={user.id} ({user.name}) for {destination}, journey_id={journey.id}"
        )
        result = AssignmentResult(
            vehicle_name=vehicle_name,
            assignee_name=user.name,
            destination=destination,
            assigned_at=now,
            journey_id=journey.id,
        )
        await self._notify(result, user)
        return result

    # --------------------------- Helpers ---------------------------

    def _destination_options(self) -> list[Option]:
        destinations = self.store.list_destinations(free_only=True)
        if not destinations:
            raise NoDestinationsAvailable()
        return [Option(d.name, d.name) for d in destinations]

    def _conflict(self, operator_id: int, vehicle_name: str | None, message: str) -> ConflictingAssignment:
        # Машина не должна остаться in_use без законного владельца
        if vehicle_name and self.store.release_if_unowned(vehicle_name):
            message += f'\nThe vehicle "{vehicle_name}" is available again.'
        self.sessions.clear(self.role, operator_id)
        logger.warning(f"[{self.role.value}] operator={operator_id} conflict: {message}")
        return ConflictingAssignment(message)

    async def _notify(self, result: AssignmentResult, user: User) -> None:
        if self.is_admin:
            sent = await self.notifier.to_user(
                user.telegram_id,
                f'🚗 You have been assigned the vehicle "{result.vehicle_name}" '
                f'for the destination "{result.destination}".',
            )
            failure = "Failed to send notification to the user."
        else:
            sent = await self.notifier.to_admin(
                f'🚗 User {user.name} has assigned the vehicle "{result.vehicle_name}" '
                f"to themselves.\n\nEmployee: {user.name}\nDestination: {result.destination}"
            )
            failure = "Failed to notify the administrator."
        result.notified = sent
        if sent is False:
            result.warnings.append(_notification_warning(self.role, failure))


class ReturnWorkflow:
    def __init__(
        self,
        role: Role,
        store: FleetStore,
        sessions: SessionStore,
        notifier: Notifier,
        clock=utcnow,
    ):
        self.role = role
        self.store = store
        self.sessions = sessions
        self.notifier = notifier
        self.clock = clock

    def begin(self, operator_id: int) -> Prompt:
        vehicles = self.store.list_vehicles(VehicleStatus.in_use)
        if not vehicles:
            raise NoVehiclesInUse()
        session = self.sessions.open(self.role, operator_id)
        session.set("state", WorkflowState.selecting_vehicle)
        return Prompt(
            WorkflowState.selecting_vehicle,
            "Select the vehicle to return:",
            [Option(f"Return {v.name} assigned to {v.current_employee}", v.name) for v in vehicles],
        )

    async def commit(self, operator_id: int, vehicle_name: str) -> ReturnResult:
        self.sessions.clear(self.role, operator_id)
        vehicle = self.store.get_vehicle(vehicle_name)
        if vehicle is None or not vehicle.in_use:
            raise RecordNotFound(f"Vehicle {vehicle_name} not found.")
        if self.role == Role.self_service:
            user = _authenticate(self.store, operator_id)
            if vehicle.assigned_user_id != user.id:
                raise RecordNotFound(f"Vehicle {vehicle_name} is not assigned to you.")
        return await self._close(operator_id, vehicle)

    async def return_own(self, operator_id: int) -> ReturnResult:
        self.sessions.clear(self.role, operator_id)
        user = _authenticate(self.store, operator_id)
        vehicle = self.store.held_vehicle(user.id)
        if vehicle is None:
            raise RecordNotFound("You have no vehicle assigned.")
        return await self._close(operator_id, vehicle)

    async def _close(self, operator_id: int, vehicle: Vehicle) -> ReturnResult:
        owner = self.store.get_user(vehicle.assigned_user_id)
        now = self.clock()
        elapsed = Elapsed.between(vehicle.assigned_at, now)

        closed = self.store.release_vehicle(vehicle, now, str(elapsed))
        logger.info(
            f"[{self.role.value}] operator={operator_id} returned {vehicle.name} "
            f"from user_id={vehicle.assigned_user_id} after {elapsed}"
        )
        result = ReturnResult(
            vehicle_name=vehicle.name,
            employee=vehicle.current_employee or (owner.name if owner else "Unknown"),
            destination=vehicle.current_destination,
            assigned_at=vehicle.assigned_at,
            returned_at=now,
            elapsed=elapsed,
            journey_closed=closed,
        )
        await self._notify(result, owner)
        return result

    async def _notify(self, result: ReturnResult, owner: User | None) -> None:
        summary = (
            f"Employee: {result.employee}\n"
            f"Destination: {result.destination}\n"
            f"Time spent: {result.elapsed.humanize()}"
        )
        if self.role == Role.administrator:
            sent = await self.notifier.to_user(
                owner.telegram_id if owner else None,
                f'🚗 Your vehicle "{result.vehicle_name}" has been successfully returned '
                f"by the admin.\n\n{summary}",
            )
            failure = "Failed to send acknowledgment to the user."
        else:
            sent = await self.notifier.to_admin(
                f'🚗 Vehicle "{result.vehicle_name}" has been returned.\n\n{summary}'
            )
            failure = "Failed to notify the administrator."
        result.notified = sent
        if sent is False:
            result.warnings.append(_notification_warning(self.role, failure))


class Workflows:
    """Everything one bot needs, bound to its role."""

    def __init__(
        self,
        role: Role,
        store: FleetStore,
        sessions: SessionStore,
        notifier: Notifier,
        journeys: JourneyQuery,
        clock=utcnow,
    ):
        self.role = role
        self.store = store
        self.sessions = sessions
        self.assignment = AssignmentWorkflow(role, store, sessions, notifier, clock)
        self.returns = ReturnWorkflow(role, store, sessions, notifier, clock)
        self.journeys = journeys
