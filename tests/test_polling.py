import asyncio

import pytest

from polling import LIST_LOOP, MESSAGES_LOOP, ConversationPoller
from results import ok


class FakeMessaging:
    def __init__(self):
        self.calls = []
        self.messages = []

    async def get_user_conversations(self, user_id):
        self.calls.append(("conversations", user_id))
        return ok("Conversaciones obtenidas", [])

    async def get_conversation_messages(self, conversation_id, user_id):
        self.calls.append(("messages", conversation_id))
        return ok("Mensajes obtenidos", list(self.messages))


class Msg:
    def __init__(self, id):
        self.id = id


@pytest.fixture
def fake():
    return FakeMessaging()


def kinds(fake):
    return {kind for kind, _ in fake.calls}


async def test_list_loop_runs_until_stopped(fake):
    poller = ConversationPoller(fake, "u1", message_interval=0.01, list_interval=0.01)
    await poller.start()
    await asyncio.sleep(0.05)
    assert poller.active_loop == LIST_LOOP
    assert kinds(fake) == {"conversations"}
    assert len(fake.calls) >= 2

    await poller.stop()
    assert poller.active_loop is None
    count = len(fake.calls)
    await asyncio.sleep(0.03)
    assert len(fake.calls) == count


async def test_only_one_loop_at_a_time(fake):
    poller = ConversationPoller(fake, "u1", message_interval=0.01, list_interval=0.01)
    await poller.start()
    await asyncio.sleep(0.02)

    await poller.open_conversation("c1")
    fake.calls.clear()
    await asyncio.sleep(0.05)
    assert poller.active_loop == MESSAGES_LOOP
    assert kinds(fake) == {"messages"}

    await poller.close_conversation()
    fake.calls.clear()
    await asyncio.sleep(0.05)
    assert poller.active_loop == LIST_LOOP
    assert kinds(fake) == {"conversations"}

    await poller.stop()


async def test_context_manager_stops_polling(fake):
    async with ConversationPoller(fake, "u1", list_interval=0.01) as poller:
        await asyncio.sleep(0.02)
        assert poller.active_loop == LIST_LOOP
    assert poller.active_loop is None
    count = len(fake.calls)
    await asyncio.sleep(0.03)
    assert len(fake.calls) == count


async def test_new_messages_callback(fake):
    fake.messages = [Msg("m1")]
    seen = []
    received = []

    async def on_new(messages):
        received.append([m.id for m in messages])

    poller = ConversationPoller(fake, "u1", on_messages=seen.append, on_new_messages=on_new,
                                message_interval=0.01, list_interval=0.01)
    await poller.open_conversation("c1")
    await asyncio.sleep(0.03)
    assert received == []
    assert seen

    fake.messages.append(Msg("m2"))
    await asyncio.sleep(0.03)
    assert received == [["m2"]]
    await poller.stop()


async def test_default_cadence():
    poller = ConversationPoller(FakeMessaging(), "u1")
    assert poller.message_interval == 3
    assert poller.list_interval == 5
    assert poller.active_loop is None


class FlakyMessaging(FakeMessaging):
    async def get_user_conversations(self, user_id):
        self.calls.append(("conversations", user_id))
        if len(self.calls) == 1:
            raise RuntimeError("hydration failed")
        return ok("Conversaciones obtenidas", [])


async def test_failed_tick_keeps_polling():
    flaky = FlakyMessaging()
    poller = ConversationPoller(flaky, "u1", list_interval=0.01)
    await poller.start()
    await asyncio.sleep(0.05)
    assert len(flaky.calls) >= 2
    assert poller.active_loop == LIST_LOOP
    await poller.stop()
    assert poller.active_loop is None


async def test_failing_callback_does_not_break_stop(fake):
    def explode(result):
        raise ValueError("render failed")

    poller = ConversationPoller(fake, "u1", on_conversations=explode, list_interval=0.01)
    await poller.start()
    await asyncio.sleep(0.03)
    assert len(fake.calls) >= 2
    await poller.stop()
