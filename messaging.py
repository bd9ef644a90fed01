"""
Buyer/seller messaging backed by the messaging database.

Two collections: `conversations` (one per unordered pair of users, stored with
the ids sorted) and `messages`. Names and vehicle snapshots are hydrated from
the local store on every read. Read marking only ever flips unread -> read.

Every operation returns an OperationResult so that an unreachable database
(`MessagingUnavailable`) is never confused with an empty inbox.
"""
import logging
from typing import List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import CollectionInvalid, DuplicateKeyError, PyMongoError

from results import ErrorCode, OperationResult, ok, fail
from schemas import Conversation, Message, VehicleSnapshot
from store import USERS, VEHICLES, to_dict
from utils import now_iso, simulated

logger = logging.getLogger(__name__)

CONVERSATIONS = "conversations"
MESSAGES = "messages"
PREVIEW_LENGTH = 50
UNKNOWN_NAME = "Usuario"
UNAVAILABLE_MESSAGE = "El servicio de mensajería no está disponible. Verifica la configuración de la base de datos."


class MessagingService:
    def __init__(self, database, store):
        self.db = database
        self.store = store

    # ------------------------- setup / probe -------------------------

    def init_messaging_collections(self):
        if self.db is None:
            raise ValueError("Messaging database not configured")
        existing = set(self.db.list_collection_names())
        for name in (CONVERSATIONS, MESSAGES):
            if name not in existing:
                try:
                    self.db.create_collection(name)
                except CollectionInvalid:  # created concurrently
                    pass
        conversations = self.db[CONVERSATIONS]
        conversations.create_index([("id", ASCENDING)], unique=True)
        conversations.create_index([("participant1Id", ASCENDING), ("participant2Id", ASCENDING)], unique=True)
        messages = self.db[MESSAGES]
        messages.create_index([("id", ASCENDING)], unique=True)
        messages.create_index([("conversationId", ASCENDING), ("sentAt", ASCENDING)])
        logger.info("Messaging collections ready")

    def check_connection(self) -> bool:
        if self.db is None:
            return False
        try:
            names = set(self.db.list_collection_names())
        except PyMongoError as e:
            logger.error("Messaging database unreachable: %s", e)
            return False
        return {CONVERSATIONS, MESSAGES} <= names

    # ------------------------- hydration -------------------------

    def _user_name(self, user_id: str) -> str:
        user = self.store.get_by_id(USERS, user_id)
        return user["fullName"] if user else UNKNOWN_NAME

    def _vehicle_snapshot(self, vehicle_id: Optional[str]) -> Optional[VehicleSnapshot]:
        if not vehicle_id:
            return None
        vehicle = self.store.get_by_id(VEHICLES, vehicle_id)
        if not vehicle:
            return None
        return VehicleSnapshot(brand=vehicle["brand"], model=vehicle["model"],
                               year=vehicle["year"], price=vehicle["price"])

    def _conversation(self, doc: dict, **extra) -> Conversation:
        return Conversation(
            id=doc["id"],
            participant1Id=doc["participant1Id"],
            participant1Name=self._user_name(doc["participant1Id"]),
            participant2Id=doc["participant2Id"],
            participant2Name=self._user_name(doc["participant2Id"]),
            vehicleId=doc.get("vehicleId"),
            vehicleInfo=self._vehicle_snapshot(doc.get("vehicleId")),
            lastMessageAt=doc["lastMessageAt"],
            createdAt=doc["createdAt"],
            **extra,
        )

    def _message(self, doc: dict, names: dict) -> Message:
        sender = doc["senderId"]
        if sender not in names:
            names[sender] = self._user_name(sender)
        return Message(**{k: doc.get(k) for k in ("id", "conversationId", "senderId", "content", "sentAt", "readAt")},
                       senderName=names[sender], isRead=doc.get("isRead", False))

    def _unavailable(self, e: Exception) -> OperationResult:
        logger.error("Messaging operation failed: %s", e)
        return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)

    # ------------------------- conversations -------------------------

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        if self.db is None:
            return None
        doc = to_dict(self.db[CONVERSATIONS].find_one({"id": conversation_id}))
        return self._conversation(doc) if doc else None

    @staticmethod
    def get_other_participant(conversation: Conversation, user_id: str) -> Optional[dict]:
        if conversation.participant1Id == user_id:
            return {"id": conversation.participant2Id, "name": conversation.participant2Name}
        if conversation.participant2Id == user_id:
            return {"id": conversation.participant1Id, "name": conversation.participant1Name}
        return None

    @simulated()
    def get_or_create_conversation(self, user_id: str, other_user_id: str,
                                   vehicle_id: Optional[str] = None) -> OperationResult:
        if self.db is None:
            return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)
        p1, p2 = sorted([user_id, other_user_id])
        pair = {"participant1Id": p1, "participant2Id": p2}
        try:
            existing = to_dict(self.db[CONVERSATIONS].find_one(pair))
            if existing:
                return ok("Conversación encontrada", self._conversation(existing))

            if not self.store.get_by_id(USERS, p1) or not self.store.get_by_id(USERS, p2):
                return fail(ErrorCode.USER_NOT_FOUND, "Usuario no encontrado")

            now = now_iso()
            oid = ObjectId()
            doc = {**pair, "_id": oid, "id": str(oid), "vehicleId": vehicle_id, "lastMessageAt": now, "createdAt": now}
            try:
                self.db[CONVERSATIONS].insert_one(doc)
            except DuplicateKeyError:
                # Another caller created the pair first
                winner = to_dict(self.db[CONVERSATIONS].find_one(pair))
                return ok("Conversación encontrada", self._conversation(winner))
        except PyMongoError as e:
            return self._unavailable(e)

        logger.info("Conversation %s created between %s and %s", doc["id"], p1, p2)
        return ok("Conversación creada", self._conversation(to_dict(doc)))

    @simulated()
    def get_user_conversations(self, user_id: str) -> OperationResult:
        if self.db is None:
            return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)
        try:
            docs = self.db[CONVERSATIONS].find(
                {"$or": [{"participant1Id": user_id}, {"participant2Id": user_id}]}
            ).sort([("lastMessageAt", DESCENDING), ("_id", DESCENDING)])

            conversations: List[Conversation] = []
            for doc in docs:
                last = list(
                    self.db[MESSAGES].find({"conversationId": doc["id"]})
                    .sort([("sentAt", DESCENDING), ("_id", DESCENDING)]).limit(1)
                )
                unread = self.db[MESSAGES].count_documents({
                    "conversationId": doc["id"],
                    "senderId": {"$ne": user_id},
                    "isRead": False,
                })
                conversations.append(self._conversation(
                    to_dict(doc),
                    lastMessagePreview=last[0]["content"][:PREVIEW_LENGTH] if last else None,
                    unreadCount=unread,
                ))
        except PyMongoError as e:
            return self._unavailable(e)
        return ok("Conversaciones obtenidas", conversations)

    # ------------------------- messages -------------------------

    @simulated()
    def send_message(self, conversation_id: str, sender_id: str, content: str) -> OperationResult:
        content = (content or "").strip()
        if not content:
            return fail(ErrorCode.EMPTY_MESSAGE, "El mensaje no puede estar vacío")
        sender = self.store.get_by_id(USERS, sender_id)
        if not sender:
            return fail(ErrorCode.USER_NOT_FOUND, "Usuario no encontrado")
        if self.db is None:
            return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)

        try:
            if not self.db[CONVERSATIONS].find_one({"id": conversation_id}):
                return fail(ErrorCode.CONVERSATION_NOT_FOUND, "Conversación no encontrada")
            now = now_iso()
            oid = ObjectId()
            doc = {
                "_id": oid,
                "id": str(oid),
                "conversationId": conversation_id,
                "senderId": sender_id,
                "content": content,
                "sentAt": now,
                "isRead": False,
                "readAt": None,
            }
            self.db[MESSAGES].insert_one(doc)
            self.db[CONVERSATIONS].update_one({"id": conversation_id}, {"$set": {"lastMessageAt": now}})
        except PyMongoError as e:
            return self._unavailable(e)

        return ok("Mensaje enviado", self._message(doc, {sender_id: sender["fullName"]}))

    @simulated()
    def get_conversation_messages(self, conversation_id: str, current_user_id: str) -> OperationResult:
        if self.db is None:
            return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)
        try:
            docs = list(
                self.db[MESSAGES].find({"conversationId": conversation_id})
                .sort([("sentAt", ASCENDING), ("_id", ASCENDING)])
            )
            unread_ids = [d["id"] for d in docs if d["senderId"] != current_user_id and not d.get("isRead")]
            if unread_ids:
                read_at = now_iso()
                self.db[MESSAGES].update_many(
                    {"id": {"$in": unread_ids}, "isRead": False},
                    {"$set": {"isRead": True, "readAt": read_at}},
                )
                for d in docs:
                    if d["id"] in unread_ids:
                        d["isRead"] = True
                        d["readAt"] = read_at
        except PyMongoError as e:
            return self._unavailable(e)

        names = {}
        return ok("Mensajes obtenidos", [self._message(d, names) for d in docs])

    @simulated()
    def get_unread_messages_count(self, user_id: str) -> OperationResult:
        if self.db is None:
            return fail(ErrorCode.MESSAGING_UNAVAILABLE, UNAVAILABLE_MESSAGE)
        try:
            ids = [d["id"] for d in self.db[CONVERSATIONS].find(
                {"$or": [{"participant1Id": user_id}, {"participant2Id": user_id}]}, {"id": 1}
            )]
            count = 0
            if ids:
                count = self.db[MESSAGES].count_documents({
                    "conversationId": {"$in": ids},
                    "senderId": {"$ne": user_id},
                    "isRead": False,
                })
        except PyMongoError as e:
            return self._unavailable(e)
        return ok("Mensajes no leídos", count)
