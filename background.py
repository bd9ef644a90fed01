"""
Simulated vehicle history lookup (RUNT-style report) by Colombian plate.

Plates follow ABC123 or ABC12D. The report is derived from the plate itself:
  - accidents when the plate contains a Z or ends in 0
  - theft reports when it starts with X
  - fines when the last two characters parse to a number above 80
Unknown plates starting with ZZZ are "not found".
"""
import hashlib
import logging
import random
import re
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from results import ErrorCode, OperationResult, ok, fail
from schemas import (
    AccidentDetail, Accidents, BackgroundVehicleInfo, Fines, Ownership,
    TechnicalReviewReport, TheftDetail, TheftReports, Vehicle, VehicleBackground,
)
from utils import days_ago_iso, days_ahead_iso, now_iso, simulated

logger = logging.getLogger(__name__)

PLATE_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{2}[0-9A-Z]$")
LEADING_INT = re.compile(r"^\d+")
UNKNOWN_PREFIX = "ZZZ"


def normalize_plate(plate: str) -> str:
    return re.sub(r"\s", "", (plate or "").upper())


def validate_license_plate(plate: str) -> bool:
    return bool(PLATE_PATTERN.match(normalize_plate(plate)))


def has_accidents(plate: str) -> bool:
    return "Z" in plate or plate.endswith("0")


def has_theft(plate: str) -> bool:
    return plate.startswith("X")


def has_fines(plate: str) -> bool:
    m = LEADING_INT.match(plate[-2:])
    return bool(m) and int(m.group()) > 80


def vin_for(plate: str) -> str:
    return "VIN" + hashlib.sha1(plate.encode("utf-8")).hexdigest()[:14].upper()


def build_background(plate: str, vehicle: Optional[Vehicle] = None) -> VehicleBackground:
    # Seeded by the plate so repeated lookups agree
    rng = random.Random(plate)
    accidents = has_accidents(plate)
    theft = has_theft(plate)
    fines = has_fines(plate)

    if vehicle:
        info = BackgroundVehicleInfo(brand=vehicle.brand, model=vehicle.model, year=vehicle.year, vin=vin_for(plate))
    else:
        info = BackgroundVehicleInfo(brand="Marca Desconocida", model="Modelo Desconocido", year=2020, vin=vin_for(plate))

    return VehicleBackground(
        licensePlate=plate,
        found=True,
        vehicleInfo=info,
        ownership=Ownership(
            currentOwner=vehicle.userName if vehicle else "Propietario Registrado",
            ownershipDate=days_ago_iso(730),
            previousOwners=rng.randint(0, 2),
        ),
        accidents=Accidents(
            hasAccidents=accidents,
            totalAccidents=rng.randint(1, 2) if accidents else 0,
            details=[AccidentDetail(
                date=days_ago_iso(365),
                severity="minor",
                description="Colisión menor en estacionamiento. Daños en parachoques trasero.",
            )] if accidents else [],
        ),
        technicalReview=TechnicalReviewReport(
            status="approved",
            lastReviewDate=days_ago_iso(180),
            nextReviewDate=days_ahead_iso(185),
            observations="Revisión técnico-mecánica y de gases aprobada. Vehículo en óptimas condiciones.",
        ),
        theftReports=TheftReports(
            hasReports=theft,
            totalReports=1 if theft else 0,
            details=[TheftDetail(
                reportDate=days_ago_iso(1095),
                status="recovered",
                description="Vehículo reportado como robado, posteriormente recuperado y devuelto al propietario.",
            )] if theft else [],
        ),
        fines=Fines(
            hasFines=fines,
            totalFines=rng.randint(1, 3) if fines else 0,
            totalAmount=rng.randint(100000, 599999) if fines else 0,
        ),
        lastUpdated=now_iso(),
    )


class BackgroundCheckSimulator:
    def __init__(self, listings):
        self.listings = listings

    @simulated(1.0, jitter=2.0)
    def get_vehicle_background(self, plate: str) -> OperationResult:
        if not validate_license_plate(plate):
            return fail(ErrorCode.INVALID_PLATE_FORMAT, "Formato de placa inválido. Use formato ABC123 o ABC12D")

        plate = normalize_plate(plate)
        vehicle = self.listings.find_by_plate(plate)
        if not vehicle and plate.startswith(UNKNOWN_PREFIX):
            logger.info("Background lookup for %s: no records", plate)
            return fail(
                ErrorCode.PLATE_NOT_FOUND,
                "No se encontraron resultados para esta placa. Verifique el número e intente nuevamente.",
            )

        logger.info("Background lookup for %s", plate)
        return ok("Antecedentes consultados exitosamente", build_background(plate, vehicle))

    async def get_vehicle_background_by_id(self, vehicle_id: str) -> OperationResult:
        vehicle = await run_in_threadpool(self.listings.get_vehicle, vehicle_id)
        if not vehicle:
            return fail(ErrorCode.VEHICLE_NOT_FOUND, "Vehículo no encontrado")
        if not vehicle.licensePlate:
            return fail(ErrorCode.NO_LICENSE_PLATE, "Este vehículo no tiene placa registrada")
        return await self.get_vehicle_background(vehicle.licensePlate)
