"""
Vehicle listings and their sale pipeline.

    draft --register_for_sale--> pending_validation --approve--> for_sale
                                 pending_validation --reject---> rejected

A completed purchase moves for_sale -> validated (status sold); that write
belongs to the payment engine. Editing a listing that is under review, for
sale or rejected sends it back to draft; sold listings are frozen.
"""
import logging
import re
from datetime import datetime
from typing import List, Optional, Union

from pydantic import ValidationError

from results import ErrorCode, OperationResult, ok, fail
from schemas import Vehicle, VehicleIn, VehicleUpdate, SearchFilters, User
from states import SaleStatus, VehicleStatus, can_transition, sale_status_label
from store import VEHICLES
from utils import now_iso, simulated

logger = logging.getLogger(__name__)

PENDING_VALIDATION_MESSAGE = "Se están validando los datos del vehículo. Este proceso puede tardar hasta 24 horas."
REVALIDATION_MESSAGE = "El vehículo fue modificado y debe registrarse nuevamente para la venta."
NOT_FOUND_MESSAGE = "Vehículo no encontrado"

# Fields a partial update may never touch
PROTECTED_FIELDS = {
    "id", "userId", "status", "saleStatus", "validationMessage", "validationDate",
    "createdAt", "updatedAt", "version",
}

SORT_KEYS = {
    "price_asc": ("price", False),
    "price_desc": ("price", True),
    "year_asc": ("year", False),
    "year_desc": ("year", True),
    "mileage_asc": ("mileage", False),
    "mileage_desc": ("mileage", True),
}

CATALOG_QUERY = {"status": VehicleStatus.ACTIVE.value, "saleStatus": SaleStatus.FOR_SALE.value}


def sort_vehicles(vehicles: List[Vehicle], key: str = "none") -> List[Vehicle]:
    """Stable sort by price, year or mileage. `none` keeps the input order."""
    if not key or key == "none":
        return list(vehicles)
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}")
    field, descending = SORT_KEYS[key]
    return sorted(vehicles, key=lambda v: getattr(v, field), reverse=descending)


def build_search_query(filters: SearchFilters) -> dict:
    query = dict(CATALOG_QUERY)
    if filters.brand:
        query["brand"] = {"$regex": re.escape(filters.brand), "$options": "i"}
    if filters.model:
        query["model"] = {"$regex": re.escape(filters.model), "$options": "i"}
    for field, low, high in (("year", filters.minYear, filters.maxYear), ("price", filters.minPrice, filters.maxPrice)):
        cond = {}
        if low is not None:
            cond["$gte"] = low
        if high is not None:
            cond["$lte"] = high
        if cond:
            query[field] = cond
    if filters.transmission:
        query["transmission"] = filters.transmission
    if filters.fuelType:
        query["fuelType"] = filters.fuelType
    return query


class ListingManager:
    def __init__(self, store):
        self.store = store

    # ------------------------- reads -------------------------

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        doc = self.store.get_by_id(VEHICLES, vehicle_id)
        return Vehicle(**doc) if doc else None

    def find_by_plate(self, plate: str) -> Optional[Vehicle]:
        doc = self.store.find_one(VEHICLES, {"licensePlate": {"$regex": f"^{re.escape(plate)}$", "$options": "i"}})
        return Vehicle(**doc) if doc else None

    def get_user_vehicles(self, user_id: str) -> List[Vehicle]:
        return [Vehicle(**d) for d in self.store.get_all(VEHICLES, {"userId": user_id})]

    def get_all_active_vehicles(self) -> List[Vehicle]:
        return [Vehicle(**d) for d in self.store.get_all(VEHICLES, {"status": VehicleStatus.ACTIVE.value})]

    def get_vehicles_for_sale(self) -> List[Vehicle]:
        return [Vehicle(**d) for d in self.store.get_all(VEHICLES, CATALOG_QUERY)]

    def get_pending_vehicles(self) -> List[Vehicle]:
        docs = self.store.get_all(VEHICLES, {"saleStatus": SaleStatus.PENDING_VALIDATION.value})
        return [Vehicle(**d) for d in docs]

    def search_vehicles(self, filters: Union[SearchFilters, dict, None] = None) -> List[Vehicle]:
        """Filter the public catalog. Filters are expected to be validated by the caller."""
        if filters is None:
            filters = SearchFilters.model_construct()
        elif isinstance(filters, dict):
            filters = SearchFilters.model_construct(**filters)
        return [Vehicle(**d) for d in self.store.get_all(VEHICLES, build_search_query(filters))]

    # ------------------------- writes -------------------------

    @simulated(0.8)
    def create_vehicle(self, data: VehicleIn, owner: User) -> OperationResult:
        now = now_iso()
        doc = {
            **data.model_dump(mode="json"),
            "userId": owner.id,
            "userEmail": owner.email,
            "userName": owner.fullName,
            "userPhone": owner.phone,
            "status": VehicleStatus.ACTIVE.value,
            "saleStatus": SaleStatus.DRAFT.value,
            "validationMessage": None,
            "validationDate": None,
            "createdAt": now,
            "updatedAt": now,
        }
        vehicle_id = self.store.insert_with_id(VEHICLES, doc)
        logger.info("Vehicle %s created as draft for user %s", vehicle_id, owner.id)
        return ok("Vehículo publicado exitosamente", Vehicle(**doc, id=vehicle_id))

    @simulated(0.5)
    def update_vehicle(self, vehicle_id: str, updates: Union[VehicleUpdate, dict]) -> OperationResult:
        vehicle = self.get_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if vehicle.status == VehicleStatus.SOLD or vehicle.saleStatus == SaleStatus.VALIDATED:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, "No se puede modificar un vehículo vendido")

        if isinstance(updates, VehicleUpdate):
            changes = updates.changes()
        else:
            changes = {k: v for k, v in (updates or {}).items() if k not in PROTECTED_FIELDS}
        try:
            changes = VehicleUpdate(**changes).changes()
        except ValidationError as e:
            return fail(ErrorCode.INVALID_INPUT, e.errors()[0]["msg"])
        if not changes:
            return ok("Sin cambios", vehicle)

        if vehicle.saleStatus != SaleStatus.DRAFT and can_transition(vehicle.saleStatus, SaleStatus.DRAFT):
            changes.update({
                "saleStatus": SaleStatus.DRAFT.value,
                "validationMessage": REVALIDATION_MESSAGE,
                "validationDate": None,
            })
        changes["updatedAt"] = now_iso()

        doc = self.store.update(VEHICLES, vehicle_id, changes, expected={"saleStatus": vehicle.saleStatus})
        if not doc:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, "El vehículo cambió de estado durante la edición. Intenta nuevamente.")
        return ok("Vehículo actualizado exitosamente", Vehicle(**doc))

    @simulated(0.5)
    def delete_vehicle(self, vehicle_id: str) -> OperationResult:
        vehicle = self.get_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if vehicle.status == VehicleStatus.SOLD:
            return fail(ErrorCode.INVALID_STATE_TRANSITION, "No se puede eliminar un vehículo vendido")
        if not self.store.delete(VEHICLES, vehicle_id, expected={"status": {"$ne": VehicleStatus.SOLD.value}}):
            return fail(ErrorCode.VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        logger.info("Vehicle %s deleted", vehicle_id)
        return ok("Vehículo eliminado exitosamente")

    @simulated(1.0)
    def register_vehicle_for_sale(self, vehicle_id: str) -> OperationResult:
        return self._transition(
            vehicle_id,
            SaleStatus.PENDING_VALIDATION,
            {"validationMessage": PENDING_VALIDATION_MESSAGE},
            "Vehículo registrado para venta. Se están validando los datos.",
        )

    @simulated(0.5)
    def admin_approve_vehicle(self, vehicle_id: str, admin_id: str) -> OperationResult:
        now = now_iso()
        result = self._transition(
            vehicle_id,
            SaleStatus.FOR_SALE,
            {
                "validationMessage": f"Aprobado por administrador el {datetime.now().strftime('%d/%m/%Y')}",
                "validationDate": now,
            },
            "Vehículo aprobado y ahora visible en el catálogo público",
        )
        if result.success:
            logger.info("Vehicle %s approved by %s", vehicle_id, admin_id)
        return result

    @simulated(0.5)
    def admin_reject_vehicle(self, vehicle_id: str, admin_id: str, reason: str) -> OperationResult:
        reason = (reason or "").strip()
        if not reason:
            return fail(ErrorCode.INVALID_INPUT, "Debes indicar el motivo del rechazo")
        result = self._transition(
            vehicle_id,
            SaleStatus.REJECTED,
            {"validationMessage": f"Rechazado: {reason}", "validationDate": now_iso()},
            "Vehículo rechazado",
        )
        if result.success:
            logger.info("Vehicle %s rejected by %s: %s", vehicle_id, admin_id, reason)
        return result

    def _transition(self, vehicle_id: str, target: SaleStatus, changes: dict, message: str) -> OperationResult:
        vehicle = self.get_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
        if not can_transition(vehicle.saleStatus, target):
            return self._refused(vehicle)

        doc = self.store.update(
            VEHICLES,
            vehicle_id,
            {**changes, "saleStatus": target.value, "updatedAt": now_iso()},
            expected={"saleStatus": vehicle.saleStatus},
        )
        if not doc:
            current = self.get_vehicle(vehicle_id)
            if not current:
                return fail(ErrorCode.VEHICLE_NOT_FOUND, NOT_FOUND_MESSAGE)
            return self._refused(current)
        return ok(message, Vehicle(**doc))

    @staticmethod
    def _refused(vehicle: Vehicle) -> OperationResult:
        return fail(
            ErrorCode.INVALID_STATE_TRANSITION,
            f"Este vehículo ya está en estado: {sale_status_label(vehicle.saleStatus)}",
            vehicle,
        )
