"""
Fleet store: every read and write the workflows make against the database.

Listings are only hints for the pickers. Every state change is a
conditional UPDATE whose rowcount tells whether we won: the vehicle moves
``available -> in_use`` only if it is still available, and back only if it
still carries the assignment we loaded. The unique index on
``vehicles.assigned_user_id`` catches two operators racing to give one user
two vehicles.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, col, select

from .errors import ConflictingAssignment, InvalidName, RecordNotFound, StoreUnavailable
from .logger import get_logger
from .models import Destination, Journey, User, Vehicle, VehicleStatus

logger = get_logger(__name__)

# Имя машины или места уходит в callback_data кнопки: лимит Telegram 64 байта,
# из них 4 на префикс вида "veh:"
MAX_NAME_BYTES = 60


def check_name(name: str) -> str:
    """Catalog names must fit an inline button payload as is."""
    name = name.strip()
    if not name:
        raise InvalidName("Name must not be empty.")
    if ":" in name:
        raise InvalidName(f'Name "{name}" must not contain ":".')
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise InvalidName(f'Name "{name}" is longer than {MAX_NAME_BYTES} bytes.')
    return name


@dataclass(frozen=True)
class JourneyKey:
    """Points at the open journey of a vehicle.

    ``journey_id`` is authoritative; the compound part is only used for rows
    written before vehicles tracked their journey id.
    """

    journey_id: Optional[int]
    user_id: int
    vehicle_name: str
    assigned_at: datetime


class FleetStore:
    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except OperationalError as exc:
            logger.error(f"Database unavailable: {exc}")
            raise StoreUnavailable() from exc

    # ------------------------------ Vehicles ------------------------------

    def list_vehicles(self, status: VehicleStatus | None = None) -> list[Vehicle]:
        with self._session() as session:
            query = select(Vehicle)
            if status is not None:
                query = query.where(Vehicle.status == status)
            return list(session.exec(query.order_by(Vehicle.name)).all())

    def get_vehicle(self, name: str) -> Vehicle | None:
        with self._session() as session:
            return session.get(Vehicle, name)

    def held_vehicle(self, user_id: int) -> Vehicle | None:
        """The vehicle the user currently has out, if any."""
        with self._session() as session:
            return self._held_vehicle(session, user_id)

    @staticmethod
    def _held_vehicle(session: Session, user_id: int) -> Vehicle | None:
        return session.exec(
            select(Vehicle).where(
                Vehicle.assigned_user_id == user_id,
                Vehicle.status == VehicleStatus.in_use,
            )
        ).first()

    def add_vehicle(self, name: str) -> Vehicle:
        with self._session() as session:
            vehicle = Vehicle(name=check_name(name))
            session.add(vehicle)
            session.commit()
            return vehicle

    def assign_vehicle(
        self,
        vehicle_name: str,
        user: User,
        destination: str,
        assigned_at: datetime,
    ) -> Journey:
        """Check out ``vehicle_name`` to ``user`` and open its journey, atomically.

        Raises ``ConflictingAssignment`` if the user already holds a vehicle
        or the vehicle is no longer available. Nothing is written in that case.
        """
        try:
            with self._session() as session:
                held = self._held_vehicle(session, user.id)
                if held is not None:
                    raise ConflictingAssignment(
                        f'The user "{user.name}" already has the vehicle "{held.name}" assigned.'
                    )

                journey = Journey(
                    user_id=user.id,
                    vehicle_name=vehicle_name,
                    destination=destination,
                    assigned_at=assigned_at,
                )
                session.add(journey)
                session.flush()

                result = session.execute(
                    update(Vehicle)
                    .where(
                        col(Vehicle.name) == vehicle_name,
                        col(Vehicle.status) == VehicleStatus.available,
                    )
                    .values(
                        status=VehicleStatus.in_use,
                        current_employee=user.name,
                        assigned_user_id=user.id,
                        current_destination=destination,
                        assigned_at=assigned_at,
                        journey_id=journey.id,
                    )
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise ConflictingAssignment(
                        f'The vehicle "{vehicle_name}" is no longer available.'
                    )
                session.commit()
                return journey
        except IntegrityError as exc:
            logger.warning(f"Assignment of {vehicle_name} to user_id={user.id} lost a race: {exc}")
            raise ConflictingAssignment(
                f'The user "{user.name}" already has a vehicle assigned.'
            ) from exc

    def release_vehicle(self, vehicle: Vehicle, returned_at: datetime, total_time: str) -> bool:
        """Return ``vehicle`` to the home base and close its journey.

        ``vehicle`` is the snapshot the caller loaded; the reset only applies
        if the row still carries the same assignment (owner, journey and
        checkout time), so a stale snapshot never clears a newer checkout.
        Returns whether a journey row was closed.
        """
        with self._session() as session:
            result = session.execute(
                update(Vehicle)
                .where(
                    col(Vehicle.name) == vehicle.name,
                    col(Vehicle.status) == VehicleStatus.in_use,
                    col(Vehicle.assigned_user_id) == vehicle.assigned_user_id,
                    # == None превращается в IS NULL
                    col(Vehicle.journey_id) == vehicle.journey_id,
                    col(Vehicle.assigned_at) == vehicle.assigned_at,
                )
                .values(**_CLEARED)
            )
            if result.rowcount != 1:
                session.rollback()
                raise RecordNotFound(f"Vehicle {vehicle.name} is not in use.")

            key = JourneyKey(
                journey_id=vehicle.journey_id,
                user_id=vehicle.assigned_user_id,
                vehicle_name=vehicle.name,
                assigned_at=vehicle.assigned_at,
            )
            completed = self._complete_journey(session, key, returned_at, total_time)
            if not completed:
                logger.warning(
                    f"No open journey matched {key}; vehicle {vehicle.name} returned anyway"
                )
            session.commit()
            return completed

    def release_if_unowned(self, vehicle_name: str) -> bool:
        """Put the vehicle back to ``available`` unless someone validly holds it."""
        with self._session() as session:
            result = session.execute(
                update(Vehicle)
                .where(
                    col(Vehicle.name) == vehicle_name,
                    (col(Vehicle.status) == VehicleStatus.available)
                    | col(Vehicle.assigned_user_id).is_(None)
                    | col(Vehicle.current_destination).is_(None)
                    | col(Vehicle.assigned_at).is_(None),
                )
                .values(**_CLEARED)
            )
            session.commit()
            return result.rowcount > 0

    # ------------------------------- Users --------------------------------

    def list_users(self, unassigned_only: bool = False) -> list[User]:
        with self._session() as session:
            query = select(User)
            if unassigned_only:
                busy = select(Vehicle.assigned_user_id).where(
                    Vehicle.status == VehicleStatus.in_use,
                    col(Vehicle.assigned_user_id).is_not(None),
                )
                query = query.where(col(User.id).not_in(busy))
            return list(session.exec(query.order_by(User.name, User.id)).all())

    def get_user(self, user_id: int) -> User | None:
        with self._session() as session:
            return session.get(User, user_id)

    def get_user_by_telegram_id(self, telegram_id: int) -> User | None:
        with self._session() as session:
            return session.exec(select(User).where(User.telegram_id == telegram_id)).first()

    def create_user(self, name: str, telegram_id: int | None = None) -> User:
        with self._session() as session:
            user = User(name=name, telegram_id=telegram_id)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    # ---------------------------- Destinations ----------------------------

    def list_destinations(self, free_only: bool = False) -> list[Destination]:
        with self._session() as session:
            query = select(Destination)
            if free_only:
                taken = select(Vehicle.current_destination).where(
                    Vehicle.status == VehicleStatus.in_use,
                    col(Vehicle.current_destination).is_not(None),
                )
                query = query.where(col(Destination.name).not_in(taken))
            return list(session.exec(query.order_by(Destination.name)).all())

    def get_destination(self, name: str) -> Destination | None:
        with self._session() as session:
            return session.get(Destination, name)

    def add_destination(self, name: str) -> Destination:
        with self._session() as session:
            destination = Destination(name=check_name(name))
            session.add(destination)
            session.commit()
            return destination

    # ------------------------------ Journeys ------------------------------

    def insert_journey(self, journey: Journey) -> Journey:
        with self._session() as session:
            session.add(journey)
            session.commit()
            session.refresh(journey)
            return journey

    def complete_journey(self, key: JourneyKey, returned_at: datetime, total_time: str) -> bool:
        with self._session() as session:
            completed = self._complete_journey(session, key, returned_at, total_time)
            session.commit()
            return completed

    @staticmethod
    def _complete_journey(
        session: Session, key: JourneyKey, returned_at: datetime, total_time: str
    ) -> bool:
        values = dict(returned_at=returned_at, total_time=total_time)
        still_open = col(Journey.returned_at).is_(None)

        if key.journey_id is not None:
            result = session.execute(
                update(Journey)
                .where(col(Journey.id) == key.journey_id, still_open)
                .values(**values)
            )
            if result.rowcount:
                return True

        # Старые строки без journey_id на машине
        open_row = session.exec(
            select(Journey)
            .where(
                Journey.user_id == key.user_id,
                Journey.vehicle_name == key.vehicle_name,
                Journey.assigned_at == key.assigned_at,
                still_open,
            )
            .order_by(col(Journey.id).desc())
        ).first()
        if open_row is None:
            return False
        open_row.returned_at = returned_at
        open_row.total_time = total_time
        session.add(open_row)
        return True

    def query_journeys(self, user_id: int, start: datetime, end: datetime) -> list[Journey]:
        """Journeys of ``user_id`` assigned within ``[start, end)`` (aware UTC)."""
        with self._session() as session:
            return list(
                session.exec(
                    select(Journey)
                    .where(
                        Journey.user_id == user_id,
                        Journey.assigned_at >= start,
                        Journey.assigned_at < end,
                    )
                    .order_by(Journey.assigned_at, Journey.id)
                ).all()
            )


_CLEARED = dict(
    status=VehicleStatus.available,
    current_employee=None,
    assigned_user_id=None,
    current_destination=None,
    assigned_at=None,
    journey_id=None,
)
