"""
Listings created before the seller has an account.

Temporary vehicles are scoped to the anonymous session id and can be turned
into a permanent draft listing once their creator registers.
"""
import logging
from typing import List, Optional, Union

from pydantic import ValidationError

import settings
from results import ErrorCode, OperationResult, ok, fail
from schemas import TemporaryVehicle, TemporaryVehicleIn, TemporaryVehicleUpdate
from states import SaleStatus, TemporaryStatus, VehicleStatus, can_transition
from store import TEMP_VEHICLES, VEHICLES
from utils import days_ago_iso, now_iso, simulated, timestamp_ms

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Vehículo temporal no encontrado"
NOT_EDITABLE_MESSAGE = "Este vehículo temporal ya fue convertido o expiró"

CARRIED_FIELDS = ("brand", "model", "year", "price", "description", "mileage", "transmission", "fuelType", "images")


def placeholder_plate() -> str:
    return "TEMP-" + timestamp_ms()[-6:]


class AnonymousListingManager:
    def __init__(self, store, listings):
        self.store = store
        self.listings = listings

    def get_temporary_vehicle(self, vehicle_id: str) -> Optional[TemporaryVehicle]:
        doc = self.store.get_by_id(TEMP_VEHICLES, vehicle_id)
        return TemporaryVehicle(**doc) if doc else None

    def get_session_temporary_vehicles(self, session) -> List[TemporaryVehicle]:
        docs = self.store.get_all(TEMP_VEHICLES, {
            "sessionId": session.anonymous_session_id(),
            "status": TemporaryStatus.TEMPORARY.value,
        })
        return [TemporaryVehicle(**d) for d in docs]

    def get_all_temporary_vehicles(self) -> List[TemporaryVehicle]:
        docs = self.store.get_all(TEMP_VEHICLES, {"status": TemporaryStatus.TEMPORARY.value})
        return [TemporaryVehicle(**d) for d in docs]

    @simulated(0.8)
    def create_temporary_vehicle(self, session, data: TemporaryVehicleIn) -> OperationResult:
        now = now_iso()
        doc = {
            **data.model_dump(mode="json"),
            "sessionId": session.anonymous_session_id(),
            "status": TemporaryStatus.TEMPORARY.value,
            "createdAt": now,
            "updatedAt": now,
        }
        vehicle_id = self.store.insert_with_id(TEMP_VEHICLES, doc)
        logger.info("Temporary vehicle %s created for session %s", vehicle_id, doc["sessionId"])
        return ok(
            "Vehículo registrado temporalmente. Podrás gestionarlo sin necesidad de crear una cuenta.",
            TemporaryVehicle(**doc, id=vehicle_id),
        )

    @simulated(0.5)
    def update_temporary_vehicle(self, vehicle_id: str,
                                 updates: Union[TemporaryVehicleUpdate, dict]) -> OperationResult:
        vehicle = self.get_temporary_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if vehicle.status != TemporaryStatus.TEMPORARY:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)

        if not isinstance(updates, TemporaryVehicleUpdate):
            try:
                updates = TemporaryVehicleUpdate(**(updates or {}))
            except ValidationError as e:
                return fail(ErrorCode.INVALID_INPUT, e.errors()[0]["msg"])
        changes = updates.model_dump(mode="json", exclude_unset=True, exclude_none=True)
        if not changes:
            return ok("Sin cambios", vehicle)
        changes["updatedAt"] = now_iso()

        doc = self.store.update(TEMP_VEHICLES, vehicle_id, changes,
                                expected={"status": TemporaryStatus.TEMPORARY.value})
        if not doc:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)
        return ok("Vehículo temporal actualizado exitosamente", TemporaryVehicle(**doc))

    @simulated(0.5)
    def delete_temporary_vehicle(self, vehicle_id: str) -> OperationResult:
        vehicle = self.get_temporary_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if vehicle.status != TemporaryStatus.TEMPORARY:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)
        if not self.store.delete(TEMP_VEHICLES, vehicle_id, expected={"status": TemporaryStatus.TEMPORARY.value}):
            return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)
        return ok("Vehículo temporal eliminado exitosamente")

    @simulated()
    def convert_temporary_vehicle_to_permanent(self, temp_id: str, user_id: str, user_email: str,
                                               user_name: str, user_phone: str) -> OperationResult:
        temp = self.get_temporary_vehicle(temp_id)
        if not temp:
            return fail(ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if not can_transition(temp.status, TemporaryStatus.CONVERTED):
            return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)

        with self.store.locked():
            claimed = self.store.update(
                TEMP_VEHICLES,
                temp_id,
                {"status": TemporaryStatus.CONVERTED.value, "updatedAt": now_iso()},
                expected={"status": TemporaryStatus.TEMPORARY.value},
            )
            if not claimed:
                return fail(ErrorCode.INVALID_STATE_TRANSITION, NOT_EDITABLE_MESSAGE)

            doc = {
                **{field: claimed[field] for field in CARRIED_FIELDS},
                "userId": user_id,
                "userEmail": user_email,
                "userName": user_name,
                "userPhone": user_phone,
                "licensePlate": placeholder_plate(),
                "status": VehicleStatus.ACTIVE.value,
                "saleStatus": SaleStatus.DRAFT.value,
                "validationMessage": None,
                "validationDate": None,
                "createdAt": temp.createdAt,
                "updatedAt": now_iso(),
            }
            vehicle_id = self.store.insert_with_id(VEHICLES, doc)

        logger.info("Temporary vehicle %s converted to vehicle %s for user %s", temp_id, vehicle_id, user_id)
        return ok("Vehículo convertido a registro permanente exitosamente", self.listings.get_vehicle(vehicle_id))

    def clean_expired_temporary_vehicles(self, days_old: int = settings.TEMP_VEHICLE_MAX_AGE_DAYS) -> int:
        removed = self.store.delete_many(TEMP_VEHICLES, {"createdAt": {"$lt": days_ago_iso(days_old)}})
        if removed:
            logger.info("Removed %d temporary vehicles older than %d days", removed, days_old)
        return removed
