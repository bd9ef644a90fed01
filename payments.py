"""
Simulated commission payments.

The buyer pays only the platform commission (a percentage of the vehicle
price). Transactions move pending -> processing -> completed | rejected, or
pending -> cancelled, and are immutable once terminal. The gateway is a
stand-in: card numbers ending in 0000 are declined for insufficient funds,
everything else is authorized.
"""
import asyncio
import base64
import io
import logging
import re
import uuid
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool
from qrcode import QRCode

import settings
from results import ErrorCode, OperationResult, ok, fail
from schemas import PaymentTransaction
from states import (
    PaymentMethod, SaleStatus, TransactionStatus, VehicleStatus, can_transition, ensure_transition,
    is_terminal,
)
from store import TRANSACTIONS, USERS, VEHICLES
from utils import now_iso, simulate_latency, simulated, timestamp_ms

logger = logging.getLogger(__name__)

DECLINED_SUFFIX = "0000"
INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
NOT_FOUND_MESSAGE = "Transacción no encontrada"


def new_transaction_id() -> str:
    return f"TXN-{timestamp_ms()}-{uuid.uuid4().hex[:9]}"


def is_declined(card_number: str) -> bool:
    return re.sub(r"\s", "", card_number or "").endswith(DECLINED_SUFFIX)


def qr_data_uri(data: str) -> str:
    qr = QRCode(box_size=4, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return "data:image/png;base64," + base64.b64encode(bio.getvalue()).decode("utf-8")


def format_price(amount: float) -> str:
    return "$" + f"{amount:,.0f}".replace(",", ".")


class PaymentEngine:
    def __init__(self, store, listings, commission_rate: float = None):
        self.store = store
        self.listings = listings
        self.commission_rate = settings.COMMISSION_RATE if commission_rate is None else commission_rate

    def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        doc = self.store.get_by_id(TRANSACTIONS, transaction_id)
        return PaymentTransaction(**doc) if doc else None

    def get_user_transactions(self, user_id: str) -> List[PaymentTransaction]:
        docs = self.store.get_all(
            TRANSACTIONS,
            {"$or": [{"buyerId": user_id}, {"sellerId": user_id}]},
            sort=[("createdAt", -1)],
        )
        return [PaymentTransaction(**d) for d in docs]

    @simulated(0.5)
    def create_payment_transaction(self, vehicle_id: str, buyer_id: str) -> OperationResult:
        vehicle = self.listings.get_vehicle(vehicle_id)
        if not vehicle:
            return fail(ErrorCode.VEHICLE_NOT_FOUND, "Vehículo no encontrado")
        if not vehicle.in_catalog:
            return fail(ErrorCode.VEHICLE_NOT_FOR_SALE, "Este vehículo no está disponible para la venta")
        if vehicle.userId == buyer_id:
            return fail(ErrorCode.SELF_PURCHASE_NOT_ALLOWED, "No puedes comprar tu propio vehículo")

        buyer = self.store.get_by_id(USERS, buyer_id)
        seller = self.store.get_by_id(USERS, vehicle.userId)
        if not buyer or not seller:
            return fail(ErrorCode.USER_NOT_FOUND, "Usuario no encontrado")

        commission = vehicle.price * (self.commission_rate / 100)
        doc = {
            "id": new_transaction_id(),
            "vehicleId": vehicle.id,
            "vehicleBrand": vehicle.brand,
            "vehicleModel": vehicle.model,
            "vehicleYear": vehicle.year,
            "vehiclePrice": vehicle.price,
            "buyerId": buyer["id"],
            "buyerName": buyer["fullName"],
            "buyerEmail": buyer["email"],
            "sellerId": seller["id"],
            "sellerName": seller["fullName"],
            "sellerEmail": seller["email"],
            "commissionRate": self.commission_rate,
            "commissionAmount": commission,
            "totalAmount": commission,
            "status": TransactionStatus.PENDING.value,
            "createdAt": now_iso(),
        }
        self.store.insert_with_id(TRANSACTIONS, doc)
        logger.info("Transaction %s created: vehicle %s, buyer %s, commission %s",
                    doc["id"], vehicle.id, buyer_id, commission)
        return ok("Transacción creada exitosamente", PaymentTransaction(**doc))

    async def process_payment(self, transaction_id: str, payment_method: str, card_number: str = "") -> OperationResult:
        token = uuid.uuid4().hex
        pending_claim = asyncio.ensure_future(run_in_threadpool(self._claim, transaction_id, payment_method, token))
        try:
            claim = await asyncio.shield(pending_claim)
        except BaseException:
            # the claim may still land after the caller is gone
            pending_claim.add_done_callback(lambda _: self._release(transaction_id, token))
            raise
        if not claim.success:
            if claim.code == ErrorCode.TRANSACTION_NOT_FOUND:
                await simulate_latency(2.0)
            return claim

        try:
            # gateway round-trip
            await simulate_latency(2.0)
        except BaseException:
            self._release(transaction_id, token)
            raise
        return await run_in_threadpool(self._settle, claim.data, card_number, token)

    def _claim(self, transaction_id: str, payment_method: str, token: str) -> OperationResult:
        """Move the transaction pending -> processing so only one caller settles it."""
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            return fail(ErrorCode.TRANSACTION_NOT_FOUND, NOT_FOUND_MESSAGE)
        if not can_transition(transaction.status, TransactionStatus.PROCESSING):
            return fail(ErrorCode.TRANSACTION_ALREADY_PROCESSED, "Esta transacción ya fue procesada", transaction)
        try:
            method = PaymentMethod(payment_method).value
        except ValueError:
            return fail(ErrorCode.INVALID_INPUT, "Método de pago inválido")

        claimed = self.store.update(
            TRANSACTIONS,
            transaction_id,
            {"status": TransactionStatus.PROCESSING.value, "paymentMethod": method, "claimToken": token},
            expected={"status": TransactionStatus.PENDING.value},
        )
        if not claimed:
            return fail(ErrorCode.TRANSACTION_ALREADY_PROCESSED, "Esta transacción ya fue procesada",
                        self.get_transaction(transaction_id))
        return ok("Transacción en proceso", PaymentTransaction(**claimed))

    def _release(self, transaction_id: str, token: str):
        """Hand an interrupted claim back to pending so it can be retried or cancelled."""
        restored = self.store.update(
            TRANSACTIONS,
            transaction_id,
            {"status": TransactionStatus.PENDING.value, "paymentMethod": None, "claimToken": None},
            expected={"status": TransactionStatus.PROCESSING.value, "claimToken": token},
        )
        if restored:
            logger.warning("Transaction %s interrupted while processing; returned to pending", transaction_id)

    def _settle(self, transaction: PaymentTransaction, card_number: str, token: str) -> OperationResult:
        try:
            return self._authorize(transaction, card_number)
        except Exception:
            self._release(transaction.id, token)
            raise

    def _authorize(self, transaction: PaymentTransaction, card_number: str) -> OperationResult:
        transaction_id = transaction.id
        if is_declined(card_number):
            doc = self._finish(transaction_id, TransactionStatus.REJECTED, {
                "rejectedReason": "Fondos insuficientes en la tarjeta",
                "paymentGatewayResponse": {
                    "success": False,
                    "errorCode": INSUFFICIENT_FUNDS,
                    "message": "Fondos insuficientes",
                },
            })
            logger.warning("Transaction %s declined: %s", transaction_id, INSUFFICIENT_FUNDS)
            return fail(ErrorCode.PAYMENT_DECLINED, "Pago rechazado: Fondos insuficientes en la tarjeta",
                        PaymentTransaction(**doc))

        sold = self.store.update(
            VEHICLES,
            transaction.vehicleId,
            {
                "status": VehicleStatus.SOLD.value,
                "saleStatus": SaleStatus.VALIDATED.value,
                "updatedAt": now_iso(),
            },
            expected={"status": VehicleStatus.ACTIVE.value, "saleStatus": SaleStatus.FOR_SALE.value},
        )
        if not sold:
            doc = self._finish(transaction_id, TransactionStatus.REJECTED, {
                "rejectedReason": "El vehículo ya no está disponible para la venta",
                "paymentGatewayResponse": {
                    "success": False,
                    "errorCode": "VEHICLE_UNAVAILABLE",
                    "message": "Vehículo no disponible",
                },
            })
            logger.warning("Transaction %s rejected: vehicle %s no longer for sale", transaction_id, transaction.vehicleId)
            return fail(ErrorCode.VEHICLE_UNAVAILABLE, "El vehículo ya no está disponible para la venta",
                        PaymentTransaction(**doc))

        doc = self._finish(transaction_id, TransactionStatus.COMPLETED, {
            "transactionReference": f"REF-{timestamp_ms()}",
            "paymentGatewayResponse": {
                "success": True,
                "authorizationCode": f"AUTH-{timestamp_ms()}",
                "message": "Pago aprobado",
            },
        })
        logger.info("Transaction %s completed; vehicle %s sold", transaction_id, transaction.vehicleId)
        return ok("Pago realizado con éxito", PaymentTransaction(**doc))

    def _finish(self, transaction_id: str, target: TransactionStatus, changes: dict) -> dict:
        ensure_transition(TransactionStatus.PROCESSING, target)
        doc = self.store.update(
            TRANSACTIONS,
            transaction_id,
            {**changes, "status": target.value, "completedAt": now_iso()},
            expected={"status": TransactionStatus.PROCESSING.value},
        )
        if not doc:
            raise RuntimeError(f"Transaction {transaction_id} left processing unexpectedly")
        return doc

    @simulated(0.3)
    def cancel_payment(self, transaction_id: str) -> OperationResult:
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            return fail(ErrorCode.TRANSACTION_NOT_FOUND, NOT_FOUND_MESSAGE)
        if not can_transition(transaction.status, TransactionStatus.CANCELLED):
            return fail(ErrorCode.TRANSACTION_NOT_CANCELLABLE, "Esta transacción no puede ser cancelada", transaction)

        doc = self.store.update(
            TRANSACTIONS,
            transaction_id,
            {"status": TransactionStatus.CANCELLED.value, "cancelledAt": now_iso()},
            expected={"status": TransactionStatus.PENDING.value},
        )
        if not doc:
            return fail(ErrorCode.TRANSACTION_NOT_CANCELLABLE, "Esta transacción no puede ser cancelada",
                        self.get_transaction(transaction_id))
        logger.info("Transaction %s cancelled", transaction_id)
        return ok("Pago cancelado", PaymentTransaction(**doc))

    def build_receipt(self, transaction_id: str) -> OperationResult:
        t = self.get_transaction(transaction_id)
        if not t:
            return fail(ErrorCode.TRANSACTION_NOT_FOUND, NOT_FOUND_MESSAGE)
        if not is_terminal(TransactionStatus, t.status) or t.status == TransactionStatus.CANCELLED:
            return fail(ErrorCode.INVALID_STATE_TRANSITION,
                        "El comprobante solo está disponible para transacciones finalizadas")

        reference = t.transactionReference or t.id
        gateway = t.paymentGatewayResponse
        lines = [
            "TuCarrito.com - Comprobante de Pago",
            "=====================================",
            "",
            f"Transacción: {reference}",
            f"Fecha: {t.completedAt or t.createdAt}",
            f"Estado: {'APROBADO' if t.status == TransactionStatus.COMPLETED else 'RECHAZADO'}",
            "",
            "Vehículo:",
            f"{t.vehicleBrand} {t.vehicleModel} {t.vehicleYear}",
            "",
            f"Comprador: {t.buyerName}",
            f"Vendedor: {t.sellerName}",
            "",
            "Detalles del Pago:",
            "------------------",
            f"Precio del Vehículo: {format_price(t.vehiclePrice)}",
            f"Comisión ({t.commissionRate:g}%): {format_price(t.commissionAmount)}",
            f"Total Pagado: {format_price(t.totalAmount)}",
            "",
            f"Método de Pago: {t.paymentMethod.upper() if t.paymentMethod else 'N/A'}",
        ]
        if gateway and gateway.authorizationCode:
            lines.append(f"Código de Autorización: {gateway.authorizationCode}")
        lines += ["", "=====================================", "Gracias por usar TuCarrito.com"]

        return ok("Comprobante generado", {
            "filename": f"comprobante-{reference}.txt",
            "text": "\n".join(lines),
            "qr": qr_data_uri(f"/payments/{t.id}"),
        })
