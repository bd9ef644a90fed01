from conftest import PNG
from results import ErrorCode
from schemas import TemporaryVehicleIn
from session import SessionContext
from store import TEMP_VEHICLES
from utils import days_ago_iso


def temp_input(**overrides):
    data = {
        "brand": "Chevrolet",
        "model": "Spark",
        "year": 2015,
        "price": 25000000,
        "mileage": 90000,
        "transmission": "manual",
        "fuelType": "gasoline",
        "images": [PNG],
        "contactName": "Pedro",
        "contactEmail": "pedro@x.com",
        "contactPhone": "3005556677",
    }
    data.update(overrides)
    return TemporaryVehicleIn(**data)


async def test_create_scoped_to_session(services, store):
    mine = SessionContext(store)
    other = SessionContext(anonymous_id="session_other")

    result = await services.temporary.create_temporary_vehicle(mine, temp_input())
    assert result.success
    assert result.data.status == "temporary"
    assert result.data.sessionId == mine.anonymous_session_id()
    await services.temporary.create_temporary_vehicle(other, temp_input(model="Aveo"))

    assert [v.model for v in services.temporary.get_session_temporary_vehicles(mine)] == ["Spark"]
    assert len(services.temporary.get_all_temporary_vehicles()) == 2


async def test_update_and_delete(services):
    session = SessionContext()
    created = (await services.temporary.create_temporary_vehicle(session, temp_input())).data

    result = await services.temporary.update_temporary_vehicle(created.id, {"price": 23000000})
    assert result.success
    assert result.data.price == 23000000

    assert (await services.temporary.update_temporary_vehicle(created.id, {"price": 0})).code == ErrorCode.INVALID_INPUT

    assert (await services.temporary.delete_temporary_vehicle(created.id)).success
    assert services.temporary.get_temporary_vehicle(created.id) is None
    assert (await services.temporary.delete_temporary_vehicle(created.id)).code == ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND


async def test_convert_to_permanent_draft(services, seller):
    session = SessionContext()
    temp = (await services.temporary.create_temporary_vehicle(session, temp_input())).data

    result = await services.temporary.convert_temporary_vehicle_to_permanent(
        temp.id, seller["id"], seller["email"], seller["fullName"], seller["phone"]
    )
    assert result.success
    vehicle = result.data
    assert vehicle.saleStatus == "draft"
    assert vehicle.status == "active"
    assert vehicle.userId == seller["id"]
    assert vehicle.model == "Spark"
    assert vehicle.licensePlate.startswith("TEMP-")
    assert vehicle.createdAt == temp.createdAt

    assert services.temporary.get_temporary_vehicle(temp.id).status == "converted"
    assert services.temporary.get_session_temporary_vehicles(session) == []


async def test_convert_only_once(services, seller):
    temp = (await services.temporary.create_temporary_vehicle(SessionContext(), temp_input())).data
    args = (temp.id, seller["id"], seller["email"], seller["fullName"], seller["phone"])
    assert (await services.temporary.convert_temporary_vehicle_to_permanent(*args)).success

    again = await services.temporary.convert_temporary_vehicle_to_permanent(*args)
    assert again.code == ErrorCode.INVALID_STATE_TRANSITION
    assert len(services.listings.get_user_vehicles(seller["id"])) == 1

    assert (await services.temporary.update_temporary_vehicle(temp.id, {"price": 1})).code == ErrorCode.INVALID_STATE_TRANSITION
    assert (await services.temporary.delete_temporary_vehicle(temp.id)).code == ErrorCode.INVALID_STATE_TRANSITION


async def test_convert_missing(services, seller):
    result = await services.temporary.convert_temporary_vehicle_to_permanent(
        "missing", seller["id"], seller["email"], seller["fullName"], seller["phone"]
    )
    assert result.code == ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND


async def test_clean_expired(services, store):
    session = SessionContext()
    old = (await services.temporary.create_temporary_vehicle(session, temp_input(model="Viejo"))).data
    await services.temporary.create_temporary_vehicle(session, temp_input(model="Nuevo"))
    store.update(TEMP_VEHICLES, old.id, {"createdAt": days_ago_iso(31)})

    assert services.temporary.clean_expired_temporary_vehicles() == 1
    assert [v.model for v in services.temporary.get_all_temporary_vehicles()] == ["Nuevo"]
    assert services.temporary.clean_expired_temporary_vehicles(days_old=0) == 1
