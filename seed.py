"""Demo accounts and catalog used by `/admin/reset-demo` and SEED_DEMO_DATA."""
import logging

from security import get_password_hash
from states import Role, SaleStatus, ValidationStatus, VehicleStatus
from store import USERS, VEHICLES
from utils import now_iso

logger = logging.getLogger(__name__)

# 1x1 PNG
PLACEHOLDER_IMAGE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

TEST_USERS = [
    {"id": "admin-1", "email": "admin1@tucarrito.com", "password": "Admin123!", "fullName": "Carlos Administrador",
     "phone": "3101234567", "idNumber": "ADM-001", "userType": "both", "role": Role.ADMIN.value},
    {"id": "admin-2", "email": "admin2@tucarrito.com", "password": "Admin456!", "fullName": "Ana Administradora",
     "phone": "3109876543", "idNumber": "ADM-002", "userType": "both", "role": Role.ADMIN.value},
    {"id": "test-seller-1", "email": "vendedor@test.com", "password": "123456", "fullName": "Juan Vendedor",
     "phone": "3001234567", "idNumber": "1234567890", "userType": "seller", "role": Role.USER.value},
    {"id": "test-buyer-1", "email": "comprador@test.com", "password": "123456", "fullName": "María Compradora",
     "phone": "3009876543", "idNumber": "0987654321", "userType": "buyer", "role": Role.USER.value},
]

DEMO_VEHICLES = [
    {"brand": "Toyota", "model": "Corolla", "year": 2020, "price": 75000000, "mileage": 35000,
     "transmission": "automatic", "fuelType": "gasoline", "licensePlate": "ABC123",
     "description": "Único dueño, mantenimientos en concesionario."},
    {"brand": "Mazda", "model": "CX-5", "year": 2022, "price": 120000000, "mileage": 18000,
     "transmission": "automatic", "fuelType": "gasoline", "licensePlate": "XAB123",
     "description": "Full equipo, techo corredizo."},
    {"brand": "Renault", "model": "Duster", "year": 2018, "price": 52000000, "mileage": 82000,
     "transmission": "manual", "fuelType": "diesel", "licensePlate": "DEF90A",
     "description": "4x4, listo para carretera."},
]


def seed_test_users(store) -> int:
    """Create the pre-approved test accounts that don't exist yet."""
    created = 0
    for entry in TEST_USERS:
        if store.find_one(USERS, {"email": entry["email"]}):
            continue
        doc = {k: v for k, v in entry.items() if k != "password"}
        doc.update({
            "passwordHash": get_password_hash(entry["password"]),
            "validationStatus": ValidationStatus.APPROVED.value,
            "isApproved": True,
            "approvedBy": None,
            "approvedAt": None,
            "createdAt": now_iso(),
        })
        store.insert_with_id(USERS, doc)
        created += 1
    if created:
        logger.info("Seeded %d test users", created)
    return created


def seed_demo_vehicles(store, seller_id: str = "test-seller-1") -> int:
    seller = store.get_by_id(USERS, seller_id)
    if not seller:
        return 0
    now = now_iso()
    for entry in DEMO_VEHICLES:
        store.insert_with_id(VEHICLES, {
            **entry,
            "images": [PLACEHOLDER_IMAGE],
            "userId": seller["id"],
            "userEmail": seller["email"],
            "userName": seller["fullName"],
            "userPhone": seller["phone"],
            "status": VehicleStatus.ACTIVE.value,
            "saleStatus": SaleStatus.FOR_SALE.value,
            "validationMessage": "Aprobado por administrador",
            "validationDate": now,
            "createdAt": now,
            "updatedAt": now,
        })
    logger.info("Seeded %d demo vehicles", len(DEMO_VEHICLES))
    return len(DEMO_VEHICLES)


def reset_demo(store) -> dict:
    store.clear_all()
    users = seed_test_users(store)
    vehicles = seed_demo_vehicles(store)
    return {"users": users, "vehicles": vehicles}
