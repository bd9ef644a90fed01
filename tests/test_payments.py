import asyncio

import pytest
from pymongo.errors import ServerSelectionTimeoutError

import settings
from results import ErrorCode, ErrorKind
from states import SaleStatus, VehicleStatus
from store import VEHICLES


async def create_transaction(services, vehicle, buyer):
    result = await services.payments.create_payment_transaction(vehicle["id"], buyer["id"])
    assert result.success
    return result.data


async def test_commission_is_the_total(services, seller, buyer, make_vehicle):
    vehicle = make_vehicle(seller, price=100000000)
    t = await create_transaction(services, vehicle, buyer)
    assert t.status == "pending"
    assert t.commissionRate == 5.0
    assert t.commissionAmount == 5000000
    assert t.totalAmount == 5000000
    assert t.id.startswith("TXN-")
    assert t.buyerName == "María Compradora"
    assert t.sellerName == "Juan Vendedor"


async def test_approved_payment_sells_vehicle(services, seller, buyer, make_vehicle):
    vehicle = make_vehicle(seller, price=100000000)
    t = await create_transaction(services, vehicle, buyer)

    result = await services.payments.process_payment(t.id, "credit_card", "4111 1111 1111 1111")
    assert result.success
    assert result.message == "Pago realizado con éxito"
    assert result.data.status == "completed"
    assert result.data.transactionReference.startswith("REF-")
    assert result.data.paymentGatewayResponse.authorizationCode.startswith("AUTH-")
    assert result.data.completedAt

    sold = services.listings.get_vehicle(vehicle["id"])
    assert sold.status == "sold"
    assert sold.saleStatus == "validated"
    assert services.listings.search_vehicles() == []


async def test_card_ending_in_zeros_is_declined(services, seller, buyer, make_vehicle):
    vehicle = make_vehicle(seller)
    t = await create_transaction(services, vehicle, buyer)

    result = await services.payments.process_payment(t.id, "debit_card", "4111111111110000")
    assert not result.success
    assert result.code == ErrorCode.PAYMENT_DECLINED
    assert result.kind == ErrorKind.AUTHORIZATION_DECLINED
    assert "Fondos insuficientes" in result.message
    assert result.data.status == "rejected"
    assert result.data.rejectedReason == "Fondos insuficientes en la tarjeta"
    assert result.data.paymentGatewayResponse.errorCode == "INSUFFICIENT_FUNDS"

    still_listed = services.listings.get_vehicle(vehicle["id"])
    assert still_listed.saleStatus == "for_sale"
    assert still_listed.status == "active"


async def test_terminal_transactions_are_immutable(services, seller, buyer, make_user, make_vehicle):
    completed = await create_transaction(services, make_vehicle(seller), buyer)
    await services.payments.process_payment(completed.id, "pse", "4111111111111111")

    rejected = await create_transaction(services, make_vehicle(seller), buyer)
    await services.payments.process_payment(rejected.id, "nequi", "0000")

    cancelled = await create_transaction(services, make_vehicle(seller), buyer)
    assert (await services.payments.cancel_payment(cancelled.id)).data.status == "cancelled"

    for t in (completed, rejected, cancelled):
        status = services.payments.get_transaction(t.id).status
        processed = await services.payments.process_payment(t.id, "credit_card", "4111111111111111")
        assert processed.code == ErrorCode.TRANSACTION_ALREADY_PROCESSED
        assert processed.message == "Esta transacción ya fue procesada"
        cancel = await services.payments.cancel_payment(t.id)
        assert cancel.code == ErrorCode.TRANSACTION_NOT_CANCELLABLE
        assert services.payments.get_transaction(t.id).status == status


async def test_cannot_buy_own_vehicle(services, seller, make_vehicle):
    result = await services.payments.create_payment_transaction(make_vehicle(seller)["id"], seller["id"])
    assert result.code == ErrorCode.SELF_PURCHASE_NOT_ALLOWED


async def test_vehicle_must_be_for_sale(services, seller, buyer, make_vehicle):
    draft = make_vehicle(seller, sale_status=SaleStatus.DRAFT)
    result = await services.payments.create_payment_transaction(draft["id"], buyer["id"])
    assert result.code == ErrorCode.VEHICLE_NOT_FOR_SALE
    assert (await services.payments.create_payment_transaction("nope", buyer["id"])).code == ErrorCode.VEHICLE_NOT_FOUND


async def test_unknown_buyer(services, seller, make_vehicle):
    result = await services.payments.create_payment_transaction(make_vehicle(seller)["id"], "ghost")
    assert result.code == ErrorCode.USER_NOT_FOUND


async def test_unknown_transaction(services):
    assert (await services.payments.process_payment("TXN-0", "pse", "1")).code == ErrorCode.TRANSACTION_NOT_FOUND
    assert (await services.payments.cancel_payment("TXN-0")).code == ErrorCode.TRANSACTION_NOT_FOUND


async def test_invalid_payment_method_leaves_transaction_pending(services, seller, buyer, make_vehicle):
    t = await create_transaction(services, make_vehicle(seller), buyer)
    result = await services.payments.process_payment(t.id, "bitcoin", "4111111111111111")
    assert result.code == ErrorCode.INVALID_INPUT
    assert services.payments.get_transaction(t.id).status == "pending"


async def test_second_buyer_loses_sold_vehicle(services, seller, buyer, make_user, make_vehicle):
    other = make_user("otro@test.com")
    vehicle = make_vehicle(seller)
    first = await create_transaction(services, vehicle, buyer)
    second = await create_transaction(services, vehicle, other)

    assert (await services.payments.process_payment(first.id, "credit_card", "4111111111111111")).success
    result = await services.payments.process_payment(second.id, "credit_card", "4111111111111111")
    assert result.code == ErrorCode.VEHICLE_UNAVAILABLE
    assert result.data.status == "rejected"
    assert services.store.get_by_id(VEHICLES, vehicle["id"])["status"] == VehicleStatus.SOLD.value


async def test_user_transactions(services, seller, buyer, make_vehicle):
    t = await create_transaction(services, make_vehicle(seller), buyer)
    assert [x.id for x in services.payments.get_user_transactions(buyer["id"])] == [t.id]
    assert [x.id for x in services.payments.get_user_transactions(seller["id"])] == [t.id]
    assert services.payments.get_user_transactions("someone") == []


async def test_receipt(services, seller, buyer, make_vehicle):
    t = await create_transaction(services, make_vehicle(seller, price=100000000), buyer)
    assert services.payments.build_receipt(t.id).code == ErrorCode.INVALID_STATE_TRANSITION

    done = (await services.payments.process_payment(t.id, "credit_card", "4111111111111111")).data
    result = services.payments.build_receipt(t.id)
    assert result.success
    receipt = result.data
    assert receipt["filename"] == f"comprobante-{done.transactionReference}.txt"
    assert receipt["text"].startswith("TuCarrito.com - Comprobante de Pago")
    assert "Estado: APROBADO" in receipt["text"]
    assert "Comisión (5%): $5.000.000" in receipt["text"]
    assert "Método de Pago: CREDIT_CARD" in receipt["text"]
    assert receipt["qr"].startswith("data:image/png;base64,")


async def test_interrupted_payment_returns_to_pending(services, seller, buyer, make_vehicle, monkeypatch):
    vehicle = make_vehicle(seller)
    t = await create_transaction(services, vehicle, buyer)

    monkeypatch.setattr(settings, "SIMULATED_LATENCY", True)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(services.payments.process_payment(t.id, "credit_card", "4111111111111111"), 0.1)
    monkeypatch.setattr(settings, "SIMULATED_LATENCY", False)

    interrupted = services.payments.get_transaction(t.id)
    assert interrupted.status == "pending"
    assert interrupted.paymentMethod is None
    assert services.listings.get_vehicle(vehicle["id"]).saleStatus == "for_sale"

    retry = await services.payments.process_payment(t.id, "credit_card", "4111111111111111")
    assert retry.success
    assert retry.data.status == "completed"


async def test_store_failure_while_settling_releases_claim(services, seller, buyer, make_vehicle, monkeypatch):
    vehicle = make_vehicle(seller)
    t = await create_transaction(services, vehicle, buyer)
    update = services.store.update

    def failing_update(collection, *args, **kwargs):
        if collection == VEHICLES:
            raise ServerSelectionTimeoutError("no servers")
        return update(collection, *args, **kwargs)

    monkeypatch.setattr(services.store, "update", failing_update)
    with pytest.raises(ServerSelectionTimeoutError):
        await services.payments.process_payment(t.id, "credit_card", "4111111111111111")
    monkeypatch.setattr(services.store, "update", update)

    assert services.payments.get_transaction(t.id).status == "pending"
    assert (await services.payments.cancel_payment(t.id)).data.status == "cancelled"


async def test_no_receipt_for_cancelled_payment(services, seller, buyer, make_vehicle):
    t = await create_transaction(services, make_vehicle(seller), buyer)
    await services.payments.cancel_payment(t.id)
    assert services.payments.build_receipt(t.id).code == ErrorCode.INVALID_STATE_TRANSITION
