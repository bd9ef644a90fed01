import pytest
from pymongo.errors import ServerSelectionTimeoutError

from messaging import CONVERSATIONS, MESSAGES, MessagingService
from results import ErrorCode, ErrorKind


@pytest.fixture
def messaging(services):
    return services.messaging


@pytest.fixture
async def conversation(messaging, seller, buyer, make_vehicle):
    vehicle = make_vehicle(seller)
    result = await messaging.get_or_create_conversation(buyer["id"], seller["id"], vehicle["id"])
    assert result.success
    return result.data


async def test_conversation_is_unique_per_pair(messaging, seller, buyer):
    first = await messaging.get_or_create_conversation(seller["id"], buyer["id"])
    second = await messaging.get_or_create_conversation(buyer["id"], seller["id"])
    assert first.data.id == second.data.id
    assert first.data.participant1Id == min(seller["id"], buyer["id"])
    assert messaging.db[CONVERSATIONS].count_documents({}) == 1


async def test_conversation_is_hydrated(conversation, seller, buyer):
    names = {conversation.participant1Name, conversation.participant2Name}
    assert names == {"Juan Vendedor", "María Compradora"}
    assert conversation.vehicleInfo.brand == "Toyota"
    assert conversation.vehicleInfo.price == 100000000


async def test_conversation_with_unknown_user(messaging, seller):
    result = await messaging.get_or_create_conversation(seller["id"], "ghost")
    assert result.code == ErrorCode.USER_NOT_FOUND


async def test_send_message(messaging, conversation, buyer):
    result = await messaging.send_message(conversation.id, buyer["id"], "  Hola  ")
    assert result.success
    assert result.data.content == "Hola"
    assert result.data.senderName == "María Compradora"
    assert not result.data.isRead
    assert messaging.get_conversation(conversation.id).lastMessageAt == result.data.sentAt


async def test_send_message_validation(messaging, conversation, buyer):
    assert (await messaging.send_message(conversation.id, buyer["id"], "   ")).code == ErrorCode.EMPTY_MESSAGE
    assert (await messaging.send_message(conversation.id, "ghost", "Hola")).code == ErrorCode.USER_NOT_FOUND
    assert (await messaging.send_message("nope", buyer["id"], "Hola")).code == ErrorCode.CONVERSATION_NOT_FOUND


async def test_recipient_reads_messages(messaging, conversation, buyer, seller):
    await messaging.send_message(conversation.id, buyer["id"], "Hola")
    await messaging.send_message(conversation.id, buyer["id"], "¿Sigue disponible?")

    listed = (await messaging.get_user_conversations(seller["id"])).data
    assert listed[0].unreadCount == 2
    assert listed[0].lastMessagePreview == "¿Sigue disponible?"
    assert (await messaging.get_unread_messages_count(seller["id"])).data == 2

    messages = (await messaging.get_conversation_messages(conversation.id, seller["id"])).data
    assert [m.content for m in messages] == ["Hola", "¿Sigue disponible?"]
    assert all(m.isRead and m.readAt for m in messages)

    listed = (await messaging.get_user_conversations(seller["id"])).data
    assert listed[0].unreadCount == 0
    assert (await messaging.get_unread_messages_count(seller["id"])).data == 0


async def test_sender_reading_does_not_mark_read(messaging, conversation, buyer, seller):
    await messaging.send_message(conversation.id, buyer["id"], "Hola")
    messages = (await messaging.get_conversation_messages(conversation.id, buyer["id"])).data
    assert not messages[0].isRead
    assert (await messaging.get_unread_messages_count(seller["id"])).data == 1
    assert (await messaging.get_unread_messages_count(buyer["id"])).data == 0


async def test_read_is_monotonic(messaging, conversation, buyer, seller):
    await messaging.send_message(conversation.id, buyer["id"], "Hola")
    first = (await messaging.get_conversation_messages(conversation.id, seller["id"])).data
    await messaging.send_message(conversation.id, seller["id"], "Sí, disponible")
    again = (await messaging.get_conversation_messages(conversation.id, seller["id"])).data

    assert again[0].isRead
    assert again[0].readAt == first[0].readAt
    assert not again[1].isRead


async def test_preview_is_truncated(messaging, conversation, buyer, seller):
    await messaging.send_message(conversation.id, buyer["id"], "x" * 80)
    listed = (await messaging.get_user_conversations(seller["id"])).data
    assert listed[0].lastMessagePreview == "x" * 50


async def test_conversations_ordered_by_activity(messaging, seller, buyer, make_user):
    other = make_user("otro@test.com")
    older = (await messaging.get_or_create_conversation(seller["id"], buyer["id"])).data
    newer = (await messaging.get_or_create_conversation(seller["id"], other["id"])).data
    listed = (await messaging.get_user_conversations(seller["id"])).data
    assert [c.id for c in listed] == [newer.id, older.id]

    await messaging.send_message(older.id, buyer["id"], "Hola")
    listed = (await messaging.get_user_conversations(seller["id"])).data
    assert [c.id for c in listed] == [older.id, newer.id]


async def test_empty_inbox_is_healthy(messaging, seller):
    result = await messaging.get_user_conversations(seller["id"])
    assert result.success
    assert result.data == []


def test_other_participant(messaging):
    from schemas import Conversation
    c = Conversation(id="c", participant1Id="a", participant1Name="A", participant2Id="b", participant2Name="B",
                     lastMessageAt="t", createdAt="t")
    assert messaging.get_other_participant(c, "a") == {"id": "b", "name": "B"}
    assert messaging.get_other_participant(c, "b") == {"id": "a", "name": "A"}
    assert messaging.get_other_participant(c, "z") is None


def test_check_connection(messaging, store, messaging_database):
    assert messaging.check_connection()
    assert not MessagingService(None, store).check_connection()

    messaging_database.drop_collection(MESSAGES)
    assert not messaging.check_connection()


async def test_unconfigured_messaging_is_unavailable(store, seller):
    service = MessagingService(None, store)
    result = await service.get_user_conversations(seller["id"])
    assert result.code == ErrorCode.MESSAGING_UNAVAILABLE
    assert result.kind == ErrorKind.CONNECTIVITY


async def test_unreachable_database_is_unavailable(store, seller):
    class Unreachable:
        def __getitem__(self, name):
            raise ServerSelectionTimeoutError("no servers")

        def list_collection_names(self):
            raise ServerSelectionTimeoutError("no servers")

    service = MessagingService(Unreachable(), store)
    assert not service.check_connection()
    result = await service.get_user_conversations(seller["id"])
    assert result.code == ErrorCode.MESSAGING_UNAVAILABLE
    result = await service.get_unread_messages_count(seller["id"])
    assert result.code == ErrorCode.MESSAGING_UNAVAILABLE
