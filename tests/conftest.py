import mongomock
import pytest

import settings
from schemas import VehicleIn
from security import get_password_hash
from services import Services
from states import SaleStatus, VehicleStatus
from store import USERS, VEHICLES
from utils import now_iso

PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


@pytest.fixture(autouse=True)
def no_latency(monkeypatch):
    monkeypatch.setattr(settings, "SIMULATED_LATENCY", False)


@pytest.fixture
def database():
    return mongomock.MongoClient()["tucarrito_test"]


@pytest.fixture
def messaging_database():
    return mongomock.MongoClient()["tucarrito_messaging_test"]


@pytest.fixture
def services(database, messaging_database):
    return Services(database, messaging_database, commission_rate=5.0).startup(seed=False)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def make_user(store):
    def _make(email, password="123456", role="user", approved=True, status=None, full_name=None, **extra):
        doc = {
            "email": email,
            "passwordHash": get_password_hash(password),
            "fullName": full_name or email.split("@")[0].title(),
            "phone": "3000000000",
            "idNumber": "1000000",
            "userType": "both",
            "role": role,
            "validationStatus": status or ("approved" if approved else "pending"),
            "isApproved": approved,
            "approvedBy": None,
            "approvedAt": None,
            "createdAt": now_iso(),
            **extra,
        }
        user_id = store.insert_with_id(USERS, doc)
        return store.get_by_id(USERS, user_id)
    return _make


@pytest.fixture
def seller(make_user):
    return make_user("vendedor@test.com", full_name="Juan Vendedor")


@pytest.fixture
def buyer(make_user):
    return make_user("comprador@test.com", full_name="María Compradora")


@pytest.fixture
def admin(make_user):
    return make_user("admin1@tucarrito.com", password="Admin123!", role="admin", full_name="Carlos Administrador")


def vehicle_input(**overrides):
    data = {
        "brand": "Toyota",
        "model": "Corolla",
        "year": 2020,
        "price": 100000000,
        "description": "Único dueño",
        "mileage": 30000,
        "transmission": "automatic",
        "fuelType": "gasoline",
        "images": [PNG],
        "licensePlate": "ABC123",
    }
    data.update(overrides)
    return VehicleIn(**data)


@pytest.fixture
def make_vehicle(store):
    """Insert a vehicle straight into the store in the given sale state."""
    def _make(owner, sale_status=SaleStatus.FOR_SALE, status=VehicleStatus.ACTIVE, **overrides):
        now = now_iso()
        doc = {
            **vehicle_input().model_dump(mode="json"),
            "userId": owner["id"],
            "userEmail": owner["email"],
            "userName": owner["fullName"],
            "userPhone": owner["phone"],
            "status": status.value,
            "saleStatus": sale_status.value,
            "validationMessage": None,
            "validationDate": None,
            "createdAt": now,
            "updatedAt": now,
            **overrides,
        }
        vehicle_id = store.insert_with_id(VEHICLES, doc)
        return store.get_by_id(VEHICLES, vehicle_id)
    return _make
