"""
Polling loops for the messaging view.

While no conversation is open the conversation list is refreshed every
CONVERSATION_POLL_INTERVAL seconds; while one is open its messages are
refreshed every MESSAGE_POLL_INTERVAL seconds instead. At most one loop runs
at a time and `stop()` leaves no task behind.
"""
import asyncio
import inspect
import logging
from typing import Callable, Optional

import settings

logger = logging.getLogger(__name__)

LIST_LOOP = "conversations"
MESSAGES_LOOP = "messages"


async def _call(callback, *args):
    if callback is None:
        return
    res = callback(*args)
    if inspect.isawaitable(res):
        await res


class ConversationPoller:
    def __init__(self, messaging, user_id: str,
                 on_messages: Optional[Callable] = None,
                 on_conversations: Optional[Callable] = None,
                 on_new_messages: Optional[Callable] = None,
                 message_interval: float = None,
                 list_interval: float = None):
        self.messaging = messaging
        self.user_id = user_id
        self.on_messages = on_messages
        self.on_conversations = on_conversations
        self.on_new_messages = on_new_messages
        self.message_interval = settings.MESSAGE_POLL_INTERVAL if message_interval is None else message_interval
        self.list_interval = settings.CONVERSATION_POLL_INTERVAL if list_interval is None else list_interval
        self.conversation_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._loop_name: Optional[str] = None
        self._seen_ids = set()
        self._primed = False

    @property
    def active_loop(self) -> Optional[str]:
        if self._task is None or self._task.done():
            return None
        return self._loop_name

    async def start(self):
        await self._switch(LIST_LOOP)
        return self

    async def open_conversation(self, conversation_id: str):
        self.conversation_id = conversation_id
        self._seen_ids = set()
        self._primed = False
        await self._switch(MESSAGES_LOOP)

    async def close_conversation(self):
        self.conversation_id = None
        self._seen_ids = set()
        self._primed = False
        await self._switch(LIST_LOOP)

    async def stop(self):
        await self._cancel()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _cancel(self):
        task, self._task, self._loop_name = self._task, None, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Polling task for user %s ended with an error", self.user_id)

    async def _switch(self, name: str):
        await self._cancel()
        if name == MESSAGES_LOOP:
            self._task = asyncio.create_task(self._run(self.poll_messages, self.message_interval))
        else:
            self._task = asyncio.create_task(self._run(self.poll_conversations, self.list_interval))
        self._loop_name = name
        logger.debug("Polling %s for user %s", name, self.user_id)

    async def _run(self, tick, interval: float):
        while True:
            try:
                await tick()
            except Exception:
                # a failed tick never ends the loop
                logger.exception("Poll tick failed for user %s", self.user_id)
            await asyncio.sleep(interval)

    async def poll_conversations(self):
        result = await self.messaging.get_user_conversations(self.user_id)
        if not result.success:
            logger.warning("Conversation poll failed: %s", result.message)
        await _call(self.on_conversations, result)

    async def poll_messages(self):
        conversation_id = self.conversation_id
        result = await self.messaging.get_conversation_messages(conversation_id, self.user_id)
        if not result.success:
            logger.warning("Message poll for %s failed: %s", conversation_id, result.message)
            await _call(self.on_messages, result)
            return
        fresh = [m for m in result.data if m.id not in self._seen_ids]
        self._seen_ids.update(m.id for m in result.data)
        primed, self._primed = self._primed, True
        await _call(self.on_messages, result)
        if fresh and primed:
            await _call(self.on_new_messages, fresh)
