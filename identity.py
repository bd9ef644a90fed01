"""
Registration, login and the admin approval gate.

Regular users register as `pending` and cannot sign in until an admin
approves them. Admins always sign in.
"""
import logging
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from results import ErrorCode, OperationResult, ok, fail
from schemas import User
from security import get_password_hash, verify_password
from states import Role, UserType, ValidationStatus, ensure_transition
from store import USERS
from utils import now_iso, simulated

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL_MESSAGE = "Ya existe un usuario con este correo electrónico"


class IdentityManager:
    def __init__(self, store):
        self.store = store

    def get_user(self, user_id: str) -> Optional[User]:
        doc = self.store.get_by_id(USERS, user_id)
        return User(**doc) if doc else None

    def find_by_email(self, email: str) -> Optional[User]:
        doc = self.store.find_one(USERS, {"email": email})
        return User(**doc) if doc else None

    def list_users(self) -> List[User]:
        return [User(**d) for d in self.store.get_all(USERS)]

    def list_pending_users(self) -> List[User]:
        docs = self.store.get_all(USERS, {"role": Role.USER.value, "isApproved": False})
        return [User(**d) for d in docs]

    @simulated(1.0)
    def register(self, email: str, password: str, full_name: str, phone: str, id_number: str,
                 user_type: str) -> OperationResult:
        email = (email or "").strip()
        if not email or not password:
            return fail(ErrorCode.INVALID_INPUT, "El correo y la contraseña son obligatorios")
        try:
            user_type = UserType(user_type).value
        except ValueError:
            return fail(ErrorCode.INVALID_INPUT, "Tipo de usuario inválido")

        if self.store.find_one(USERS, {"email": email}):
            return fail(ErrorCode.DUPLICATE_EMAIL, DUPLICATE_EMAIL_MESSAGE)

        doc = {
            "email": email,
            "passwordHash": get_password_hash(password),
            "fullName": full_name,
            "phone": phone,
            "idNumber": id_number,
            "userType": user_type,
            "role": Role.USER.value,
            "validationStatus": ValidationStatus.PENDING.value,
            "isApproved": False,
            "approvedBy": None,
            "approvedAt": None,
            "createdAt": now_iso(),
        }
        try:
            user_id = self.store.insert_with_id(USERS, doc)
        except DuplicateKeyError:
            return fail(ErrorCode.DUPLICATE_EMAIL, DUPLICATE_EMAIL_MESSAGE)

        logger.info("Registered user %s (%s), pending approval", user_id, email)
        return ok("Registro exitoso. Tu cuenta está en proceso de validación.", User(**doc, id=user_id))

    @simulated(0.8)
    def login(self, session, email: str, password: str) -> OperationResult:
        user = self.find_by_email((email or "").strip())
        if not user or not verify_password(password or "", user.passwordHash):
            return fail(ErrorCode.INVALID_CREDENTIALS, "Correo o contraseña incorrectos")

        if user.role == Role.ADMIN:
            session.sign_in(user)
            logger.info("Admin %s signed in", user.id)
            return ok("Inicio de sesión exitoso", user)

        # rejected users are also unapproved, so rejection is checked first
        if user.validationStatus == ValidationStatus.REJECTED:
            return fail(
                ErrorCode.ACCOUNT_REJECTED,
                "Tu cuenta ha sido rechazada. Contacta al soporte para más información.",
            )
        if not user.isApproved:
            return fail(
                ErrorCode.PENDING_APPROVAL,
                "Tu cuenta está pendiente de aprobación por un administrador. Serás notificado cuando sea aprobada.",
            )

        session.sign_in(user)
        logger.info("User %s signed in", user.id)
        return ok("Inicio de sesión exitoso", user)

    def logout(self, session) -> OperationResult:
        session.sign_out()
        return ok("Sesión cerrada")

    async def approve_user(self, user_id: str, admin_id: str) -> OperationResult:
        return await self._decide(user_id, admin_id, ValidationStatus.APPROVED, "Usuario aprobado exitosamente")

    async def reject_user(self, user_id: str, admin_id: str) -> OperationResult:
        return await self._decide(user_id, admin_id, ValidationStatus.REJECTED, "Usuario rechazado")

    @simulated(0.5)
    def _decide(self, user_id, admin_id, target: ValidationStatus, message: str) -> OperationResult:
        user = self.get_user(user_id)
        if not user:
            return fail(ErrorCode.USER_NOT_FOUND, "Usuario no encontrado")
        ensure_transition(user.validationStatus, target)

        doc = self.store.update(USERS, user_id, {
            "isApproved": target == ValidationStatus.APPROVED,
            "validationStatus": target.value,
            "approvedBy": admin_id,
            "approvedAt": now_iso(),
        })
        if not doc:
            return fail(ErrorCode.USER_NOT_FOUND, "Usuario no encontrado")
        logger.info("User %s %s by %s", user_id, target.value, admin_id)
        return ok(message, User(**doc))
