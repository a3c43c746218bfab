"""Message bus for agent-to-agent communication.

Two channels share one ephemeral store:

- **direct**: one sender, one recipient, single-read. ``receive_direct`` marks
  the rows it returns as read so they are never delivered twice.
- **broadcast**: scoped to a location, never marked read. Visibility is a
  time window, and a sender never hears its own broadcast.

Every message carries an expiry; ``cleanup_expired`` deletes the stale ones.
The bus is a log, not a transactional queue: ``inbox`` concatenates direct
messages before broadcasts with no interleaving by time.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional

from .clock import Clock, SystemClock
from .logging_utils import log_deterministic
from .persistence import PersistenceStrategy
from .schemas import Channel, Message, MessageMeta

DIRECT_TTL = timedelta(days=7)
BROADCAST_TTL = timedelta(hours=24)
BROADCAST_WINDOW = timedelta(minutes=60)
BROADCAST_LIMIT = 5


def _newest_first(messages: List[Message]) -> List[Message]:
    # message_id breaks ties between messages created in the same instant
    return sorted(messages, key=lambda m: (m.created_at, m.message_id or 0), reverse=True)


class MessageBus:
    """Direct and location-broadcast messaging over the persistence collaborator."""

    def __init__(self, persistence: PersistenceStrategy, *, clock: Optional[Clock] = None):
        self.persistence = persistence
        self.clock = clock or SystemClock()

    async def send_direct(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        meta: Optional[MessageMeta] = None,
        *,
        ttl: timedelta = DIRECT_TTL,
    ) -> Message:
        now = self.clock.now()
        message = Message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            channel=Channel.DIRECT,
            content=content,
            meta=meta,
            expires_at=now + ttl,
            created_at=now,
        )
        stored = await self.persistence.add_message(message)
        log_deterministic(f"message {sender_id} -> {recipient_id}: {content[:60]}")
        return stored

    async def broadcast(
        self,
        sender_id: str,
        location_id: str,
        content: str,
        ttl: timedelta = BROADCAST_TTL,
        meta: Optional[MessageMeta] = None,
    ) -> Message:
        now = self.clock.now()
        message = Message(
            sender_id=sender_id,
            location_id=location_id,
            channel=Channel.BROADCAST,
            content=content,
            meta=meta,
            expires_at=now + ttl,
            created_at=now,
        )
        stored = await self.persistence.add_message(message)
        log_deterministic(f"broadcast {sender_id} @ {location_id}: {content[:60]}")
        return stored

    async def receive_direct(self, agent_id: str, limit: int = 10) -> List[Message]:
        """Unread direct messages, newest first. Returned messages are marked read."""
        now = self.clock.now()
        unread = [
            m
            for m in await self.persistence.get_messages(
                channel=Channel.DIRECT, recipient_id=agent_id, unread_only=True
            )
            if m.expires_at is None or m.expires_at > now
        ]
        batch = _newest_first(unread)[: max(limit, 0)]
        if batch:
            await self.persistence.mark_messages_read([m.message_id for m in batch], now)
            for message in batch:
                message.read_at = now
        return batch

    async def recent_broadcasts(
        self,
        location_id: str,
        exclude_agent_id: Optional[str] = None,
        window: timedelta = BROADCAST_WINDOW,
        limit: int = BROADCAST_LIMIT,
    ) -> List[Message]:
        """Unexpired broadcasts at ``location_id`` from the last ``window``, newest first."""
        now = self.clock.now()
        since = now - window
        visible = [
            m
            for m in await self.persistence.get_messages(
                channel=Channel.BROADCAST, location_id=location_id
            )
            if m.sender_id != exclude_agent_id
            and m.created_at > since
            and (m.expires_at is None or m.expires_at > now)
        ]
        return _newest_first(visible)[: max(limit, 0)]

    async def inbox(self, agent_id: str, location_id: str, limit: int = 10) -> List[Message]:
        """Direct messages (marked read) followed by nearby broadcasts."""
        direct = await self.receive_direct(agent_id, limit)
        broadcasts = await self.recent_broadcasts(location_id, agent_id)
        return direct + broadcasts

    async def unread_count(self, agent_id: str) -> int:
        """Count unexpired unread direct messages without marking anything read."""
        now = self.clock.now()
        unread = await self.persistence.get_messages(
            channel=Channel.DIRECT, recipient_id=agent_id, unread_only=True
        )
        return sum(1 for m in unread if m.expires_at is None or m.expires_at > now)

    async def conversation(self, agent_a: str, agent_b: str, limit: int = 20) -> List[Message]:
        """Direct messages exchanged between two agents, newest first."""
        pair = {agent_a, agent_b}
        exchanged = [
            m
            for m in await self.persistence.get_messages(channel=Channel.DIRECT)
            if {m.sender_id, m.recipient_id} == pair
        ]
        return _newest_first(exchanged)[: max(limit, 0)]

    async def cleanup_expired(self) -> int:
        removed = await self.persistence.delete_expired_messages(self.clock.now())
        if removed:
            log_deterministic(f"cleaned up {removed} expired message(s)")
        return removed

    async def stats(self) -> Dict[str, int]:
        """Totals for monitoring: all messages, unread direct, created in the last day."""
        now = self.clock.now()
        messages = await self.persistence.get_messages()
        return {
            "total": len(messages),
            "unread": sum(
                1 for m in messages if m.channel == Channel.DIRECT and m.read_at is None
            ),
            "last_24h": sum(1 for m in messages if m.created_at > now - timedelta(days=1)),
        }
