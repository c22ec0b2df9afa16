"""Client-side chat synchronization.

This module provides the ChatSyncEngine class that keeps a user's view of
their conversations consistent with the document backend. It merges three
sources of change:

- Optimistic local sends, shown before the backend confirms them
- A periodic poll of every message the user can see (previews, unread counts)
- A periodic authoritative snapshot of the open conversation, which also
  marks inbound messages as read

Every list it exposes is kept sorted by creation time, oldest first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import timedelta

from chat_sync.core.settings import Settings, settings
from chat_sync.schemas.conversation import Conversation, ReadCursor
from chat_sync.schemas.message import (
    ChatTarget,
    ConversationType,
    Message,
    MessageType,
    contact_content,
    location_content,
)
from chat_sync.services.backend import BackendError, DocumentStore
from chat_sync.services.conversations import ConversationService
from chat_sync.services.notifications import NotificationService
from chat_sync.services.observable import ObservableList
from chat_sync.services.polling import Poller
from chat_sync.services.query import Query
from chat_sync.services.storage import FileUploader, MediaFile

# Configure logger for this module
logger = logging.getLogger(__name__)


class ChatSyncError(RuntimeError):
    """Base exception raised for user-initiated chat actions."""


class MessageSendError(ChatSyncError):
    """Raised when the durable write of a message fails."""


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Order messages by creation time; ties keep their current order."""
    return sorted(messages, key=lambda message: message.created_at)


def reconcile_optimistic(
    confirmed: Sequence[Message],
    optimistic: Sequence[Message],
    window_seconds: float,
) -> list[Message]:
    """Merge a confirmed snapshot with locally pending sends.

    A pending message survives only while no confirmed message has the same
    content, sender, receiver and type within ``window_seconds`` of it.
    """
    window = timedelta(seconds=window_seconds)
    pending = [
        local
        for local in optimistic
        if not any(
            remote.same_payload(local) and abs(remote.created_at - local.created_at) < window
            for remote in confirmed
        )
    ]
    return sort_messages([*confirmed, *pending])


def merge_by_id(existing: Sequence[Message], fetched: Sequence[Message]) -> list[Message]:
    """Append fetched messages that are not held yet."""
    known = {message.id for message in existing}
    return sort_messages([*existing, *(message for message in fetched if message.id not in known)])


def replace_message(
    messages: Sequence[Message], temp_id: str | None, confirmed: Message
) -> list[Message]:
    """Swap an optimistic copy for its confirmed counterpart.

    Any entry already carrying the confirmed id (a poll that raced ahead of
    the write) is replaced too, so exactly one copy remains.
    """
    kept = [
        message
        for message in messages
        if message.id != confirmed.id and not (message.optimistic and message.id == temp_id)
    ]
    return sort_messages([*kept, confirmed])


def without_message(messages: Sequence[Message], message_id: str) -> list[Message]:
    return [message for message in messages if message.id != message_id]


class ChatSyncEngine:
    """Keeps the active conversation and the all-conversations view in sync.

    The engine is single-owner state: only its own operations mutate
    ``messages`` (the open conversation) and ``all_messages`` (everything the
    user can see). Both are observable lists the UI subscribes to.

    Concurrency is cooperative. Every backend call is a suspension point, so
    results fetched for a conversation are discarded when the user switched
    conversations in the meantime, and a single-flight flag keeps sends from
    overlapping.
    """

    def __init__(
        self,
        user_id: str,
        store: DocumentStore,
        *,
        conversations: ConversationService | None = None,
        uploader: FileUploader | None = None,
        notifier: NotificationService | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the engine for one signed-in user.

        Args:
            user_id: Identifier of the local user.
            store: Document backend.
            conversations: Conversation directory. Defaults to one over ``store``.
            uploader: File uploader used by ``send_attachment``.
            notifier: Notification collaborator. Defaults to one over ``store``.
            config: Settings override; the global settings are used otherwise.
        """
        self.user_id = user_id
        self.store = store
        self.settings = config or settings
        self.conversations = conversations or ConversationService(store, self.settings)
        self.uploader = uploader
        self.notifier = notifier or NotificationService(store, self.settings)

        self.messages: ObservableList[Message] = ObservableList("messages")
        self.all_messages: ObservableList[Message] = ObservableList("all_messages")
        self.chats: ObservableList[Conversation] = ObservableList("chats")
        self.groups: ObservableList[Conversation] = ObservableList("groups")
        self.read_cursors: dict[str, ReadCursor] = {}

        self.active: ChatTarget | None = None
        self._sending = False
        self._running = False
        # Bumped whenever the open conversation changes or the session stops.
        self._generation = 0
        self._session = 0
        # Bumped by every confirmed local write; snapshots fetched across one are stale.
        self._writes = 0

        self._all_poller = Poller(
            "all-conversations",
            self._poll_all_conversations,
            self.settings.all_conversations_poll_interval_seconds,
        )
        self._active_poller: Poller | None = None

    @property
    def sending(self) -> bool:
        return self._sending

    @property
    def running(self) -> bool:
        return self._running

    @property
    def _messages_collection(self) -> str:
        return self.settings.messages_collection_id

    # --- Lifecycle -------------------------------------------------------------------

    async def start(self) -> None:
        """Load the user's conversations and begin background polling."""

        if self._running:
            return

        chats, groups = await self.conversations.load(self.user_id)
        self.chats.set(chats)
        self.groups.set(groups)
        cursors = await self.conversations.load_read_cursors(self.user_id)
        self.read_cursors = {cursor.chat_id: cursor for cursor in cursors}

        self._running = True
        await self.fetch_and_merge_all_conversations()
        self._all_poller.start(immediate=False)
        if self.active is not None:
            self._start_active_poller()
        logger.info("Chat sync started for %s (%d chats, %d groups)",
                    self.user_id, len(chats), len(groups))

    async def stop(self) -> None:
        """Stop all polling (logout or teardown)."""

        self._running = False
        self._session += 1
        await self._all_poller.stop()
        await self._stop_active_poller()
        logger.info("Chat sync stopped for %s", self.user_id)

    async def __aenter__(self) -> ChatSyncEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _start_active_poller(self) -> None:
        self._active_poller = Poller(
            "active-conversation",
            self._poll_active_conversation,
            self.settings.active_conversation_poll_interval_seconds,
        )
        self._active_poller.start()

    async def _stop_active_poller(self) -> None:
        poller, self._active_poller = self._active_poller, None
        if poller is not None:
            await poller.stop()

    async def _poll_all_conversations(self) -> None:
        await self.fetch_and_merge_all_conversations()

    async def _poll_active_conversation(self) -> None:
        await self.fetch_and_mark_read_for_active_conversation()

    # --- Queries ---------------------------------------------------------------------

    def _receiver_for(self, target: ChatTarget) -> str | None:
        if target.is_group or target.id == self.user_id:
            return None
        return target.id

    def _conversation_queries(self, target: ChatTarget) -> list[Query]:
        newest_first = Query.order_desc("$createdAt")
        if target.is_group:
            return [Query.equal("chatId", target.id), newest_first]
        if target.id == self.user_id:
            return [
                Query.equal("chatId", self.user_id),
                Query.equal("senderId", self.user_id),
                newest_first,
            ]
        return [
            Query.or_(
                [
                    Query.and_(
                        [
                            Query.equal("senderId", self.user_id),
                            Query.equal("receiverId", target.id),
                        ]
                    ),
                    Query.and_(
                        [
                            Query.equal("senderId", target.id),
                            Query.equal("receiverId", self.user_id),
                        ]
                    ),
                ]
            ),
            newest_first,
        ]

    def _all_conversations_queries(self) -> list[Query]:
        clauses = [
            Query.equal("senderId", self.user_id),
            Query.equal("receiverId", self.user_id),
        ]
        group_ids = [group.id for group in self.groups]
        if group_ids:
            clauses.append(Query.equal("chatId", group_ids))
        return [Query.or_(clauses)]

    async def _fetch_conversation(self, target: ChatTarget) -> list[Message]:
        documents = await self.store.list_documents(
            self._messages_collection, self._conversation_queries(target)
        )
        # Backend returns newest first.
        return sort_messages(reversed([Message.from_document(doc) for doc in documents]))

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _written_since(self, writes: int) -> bool:
        return writes != self._writes

    # --- Synchronization -------------------------------------------------------------

    async def fetch_and_merge_all_conversations(self) -> bool:
        """Refresh ``all_messages`` from the backend, keeping unmatched optimistic sends.

        A snapshot taken before a local send or delete completed may predate
        that write, so it is dropped and the next poll picks the write up.

        Returns:
            True when the snapshot was applied, False when the fetch failed,
            the session ended or a local write completed while it was in flight.
        """
        session = self._session
        writes = self._writes
        try:
            documents = await self.store.list_documents(
                self._messages_collection, self._all_conversations_queries()
            )
        except BackendError as e:
            logger.warning("All-conversations poll failed: %s", e)
            return False

        if session != self._session:
            return False
        if self._written_since(writes):
            logger.debug("Discarding all-conversations snapshot older than a local write")
            return False

        confirmed = [Message.from_document(doc) for doc in documents]
        optimistic = [message for message in self.all_messages if message.optimistic]
        self.all_messages.set(
            reconcile_optimistic(confirmed, optimistic, self.settings.duplicate_window_seconds)
        )
        return True

    async def fetch_and_mark_read_for_active_conversation(self) -> bool:
        """Replace ``messages`` with the open conversation and mark inbound messages read.

        Read marks are independent and best-effort; a failed mark is retried
        on the next poll because the message still reads as unread.

        Returns:
            True when the snapshot was applied to the still-open conversation.
        """
        target = self.active
        if target is None:
            return False

        generation = self._generation
        writes = self._writes
        try:
            fetched = await self._fetch_conversation(target)
        except BackendError as e:
            logger.warning("Active conversation poll failed for %s: %s", target.id, e)
            return False

        if not self._is_current(generation) or self._written_since(writes):
            logger.debug("Discarding stale snapshot for %s", target.id)
            return False

        self.messages.set(fetched)

        unread = [
            message
            for message in fetched
            if message.receiver_id == self.user_id
            and not message.is_read
            and not message.optimistic
        ]
        for message in unread:
            if not self._is_current(generation):
                logger.debug("Stopped marking %s read after a conversation switch", target.id)
                break
            try:
                await self.store.update_document(
                    self._messages_collection, message.id, {"is_read": True}
                )
            except (BackendError, OSError) as e:
                logger.debug("Could not mark %s read: %s", message.id, e)
                continue
            self._mirror_read(message.id, generation)

        return True

    def _mirror_read(self, message_id: str, generation: int) -> None:
        def mark(messages: Iterable[Message]) -> list[Message]:
            return [
                message.model_copy(update={"is_read": True}) if message.id == message_id else message
                for message in messages
            ]

        self.all_messages.set(mark(self.all_messages))
        if self._is_current(generation):
            self.messages.set(mark(self.messages))

    async def open_conversation(self, target: ChatTarget) -> None:
        """Make ``target`` the open conversation and load its history.

        History is merged rather than replaced so a send issued right after
        opening is not lost. The user's read cursor is moved to now.
        """
        self._generation += 1
        generation = self._generation
        self.active = target
        self.messages.set([])

        await self._stop_active_poller()
        if self._running:
            self._start_active_poller()

        try:
            fetched = await self._fetch_conversation(target)
        except BackendError as e:
            logger.warning("Loading history for %s failed: %s", target.id, e)
        else:
            if self._is_current(generation):
                self.messages.set(merge_by_id(self.messages.items, fetched))

        await self._touch_read_cursor(target)

    async def _touch_read_cursor(self, target: ChatTarget) -> None:
        existing = self.read_cursors.get(target.id)
        try:
            cursor = await self.conversations.upsert_read_cursor(
                self.user_id, target.id, existing
            )
        except Exception as e:
            logger.warning("Could not update read cursor for %s: %s", target.id, e)
            return
        self.read_cursors[target.id] = cursor

    async def close_conversation(self) -> None:
        """Close the open conversation and stop polling it."""
        self._generation += 1
        self.active = None
        self.messages.set([])
        await self._stop_active_poller()

    # --- Sending ---------------------------------------------------------------------

    async def send_message(
        self,
        type: MessageType | str,
        content: str = "",
        file_url: str = "",
        optimistic: bool = True,
    ) -> Message | None:
        """Send a message to the open conversation.

        Returns:
            The confirmed message, or None when no conversation is open or a
            send is already in flight.

        Raises:
            MessageSendError: the durable write failed; the optimistic copy
                has been removed from both lists.
        """
        target = self.active
        if self._sending or target is None:
            return None

        self._sending = True
        try:
            receiver_id = self._receiver_for(target)
            payload = Message.build_payload(
                chat_id=target.id,
                sender_id=self.user_id,
                receiver_id=receiver_id,
                type=MessageType(type),
                content=content,
                file_url=file_url,
            )

            draft = Message.optimistic_copy(payload)
            temp: Message | None = None
            if optimistic:
                temp = draft
                self.messages.set(sort_messages([*self.messages, temp]))
                self.all_messages.set(sort_messages([*self.all_messages, temp]))

            try:
                document = await self.store.create_document(
                    self._messages_collection, draft.to_document()
                )
                saved = Message.from_document(document)
            except Exception as exc:
                if temp is not None:
                    self.messages.set(without_message(self.messages, temp.id))
                    self.all_messages.set(without_message(self.all_messages, temp.id))
                logger.warning("Sending message to %s failed: %s", target.id, exc)
                raise MessageSendError(f"Message could not be sent: {exc}") from exc

            temp_id = temp.id if temp is not None else None
            if self.active == target:
                self.messages.set(replace_message(self.messages, temp_id, saved))
            self.all_messages.set(replace_message(self.all_messages, temp_id, saved))
            self._writes += 1

            if (
                target.type == ConversationType.PRIVATE
                and receiver_id is not None
                and receiver_id != self.user_id
            ):
                await self._notify_message(receiver_id)

            return saved
        finally:
            self._sending = False

    async def _notify_message(self, receiver_id: str) -> None:
        try:
            await self.notifier.create_notification("message", self.user_id, receiver_id, None)
        except Exception as e:
            logger.warning("Failed to create message notification for %s: %s", receiver_id, e)

    async def send_text(self, text: str) -> Message | None:
        text = text.strip()
        if not text:
            return None
        return await self.send_message(MessageType.TEXT, content=text)

    async def send_attachment(self, media_type: MessageType | str, file: MediaFile) -> Message | None:
        """Upload ``file`` and send it as an image, video, audio or document message."""
        if self.uploader is None:
            raise ChatSyncError("No file uploader configured")
        kind = MessageType(media_type)
        file_url = await self.uploader.upload(file, kind.value)
        return await self.send_message(kind, content=file.name, file_url=file_url)

    async def send_location(
        self, latitude: float, longitude: float, address: str = ""
    ) -> Message | None:
        return await self.send_message(
            MessageType.LOCATION, content=location_content(latitude, longitude, address)
        )

    async def send_contact(self, name: str, phone: str = "", email: str = "") -> Message | None:
        return await self.send_message(
            MessageType.CONTACT, content=contact_content(name, phone, email)
        )

    async def delete_message(self, message_id: str) -> None:
        await self.store.delete_document(self._messages_collection, message_id)
        self._writes += 1
        self.messages.set(without_message(self.messages, message_id))
        self.all_messages.set(without_message(self.all_messages, message_id))

    # --- Derived views ---------------------------------------------------------------

    def _in_conversation(self, message: Message, target: ChatTarget) -> bool:
        if target.is_group:
            return message.chat_id == target.id
        return (
            message.sender_id == self.user_id and message.receiver_id == target.id
        ) or (message.sender_id == target.id and message.receiver_id == self.user_id)

    def compute_unread_count(self, target: ChatTarget) -> int:
        """Count confirmed, unread messages addressed to the local user.

        Optimistic messages never count: an unconfirmed send is not unread
        for its own sender.
        """

        def counts(message: Message) -> bool:
            if message.receiver_id != self.user_id or message.is_read or message.optimistic:
                return False
            if target.is_group:
                return message.chat_id == target.id
            return message.sender_id == target.id

        return sum(1 for message in self.all_messages if counts(message))

    def chat_partner_ids(self) -> set[str]:
        """Users the local user has exchanged private messages with."""
        partners: set[str] = set()
        for message in self.all_messages:
            if (
                message.sender_id == self.user_id
                and message.receiver_id
                and message.receiver_id != self.user_id
            ):
                partners.add(message.receiver_id)
            if message.receiver_id == self.user_id and message.sender_id != self.user_id:
                partners.add(message.sender_id)
        return partners

    def total_unread_count(self) -> int:
        targets = [group.target() for group in self.groups]
        targets.extend(ChatTarget(id=partner) for partner in self.chat_partner_ids())
        return sum(self.compute_unread_count(target) for target in targets)

    def last_message(self, target: ChatTarget) -> Message | None:
        """Newest message of a conversation, used for previews and list ordering."""
        matching = [m for m in self.all_messages if self._in_conversation(m, target)]
        return matching[-1] if matching else None

    # --- Conversation management -----------------------------------------------------

    def _find_group(self, group_id: str) -> Conversation | None:
        return next((group for group in self.groups if group.id == group_id), None)

    async def create_group(self, name: str, member_ids: Sequence[str]) -> Conversation:
        """Create a group, add it to ``groups`` and open it."""
        group = await self.conversations.create_group(self.user_id, name, member_ids)
        self.groups.set([*self.groups, group])
        await self.open_conversation(group.target())
        return group

    async def leave_group(self, group_id: str) -> None:
        group = self._find_group(group_id)
        if group is None:
            return
        await self.conversations.leave_group(self.user_id, group)
        self.groups.set([g for g in self.groups if g.id != group_id])
        if self.active is not None and self.active.id == group_id:
            await self.close_conversation()

    async def delete_group(self, group_id: str) -> None:
        """Delete a group the local user created, including its messages."""
        group = self._find_group(group_id)
        if group is None:
            return
        await self.conversations.delete_group(self.user_id, group)
        self._writes += 1
        self.groups.set([g for g in self.groups if g.id != group_id])
        self.all_messages.set([m for m in self.all_messages if m.chat_id != group_id])
        if self.active is not None and self.active.id == group_id:
            await self.close_conversation()

    async def toggle_favourite(self, target: ChatTarget) -> Conversation:
        updated = await self.conversations.toggle_favourite(
            self.user_id, target, self.chats.items, self.groups.items
        )
        listing = self.groups if updated.is_group else self.chats
        if any(item.id == updated.id for item in listing):
            listing.set([updated if item.id == updated.id else item for item in listing])
        else:
            listing.set([*listing, updated])
        return updated
