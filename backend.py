import asyncio
import concurrent.futures
import json
import uuid
from typing import Any, Dict, List, Optional, Set

import redis

from constants import BROADCAST_BACKEND, REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_EVENTS_CHANNEL
from logging_config import get_logger

logger = get_logger(__name__)


def make_frame(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": event, "data": payload}


class MemoryBackend:
    """In-process pub/sub hub.

    Every registered connection owns an outbox queue that the websocket writer
    drains. Groups are plain sets of connection ids. Delivery only enqueues, so
    callers never suspend while publishing.
    """

    def __init__(self):
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._groups: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    async def start(self):
        logger.info(f"{type(self).__name__} started")

    async def stop(self):
        for connection_id in list(self._outboxes):
            self.unregister(connection_id)
        logger.info(f"{type(self).__name__} stopped")

    def register(self, connection_id: str) -> asyncio.Queue:
        outbox = asyncio.Queue()
        self._outboxes[connection_id] = outbox
        self._memberships[connection_id] = set()
        logger.debug(f"Registered connection {connection_id} (local connections: {len(self._outboxes)})")
        return outbox

    def unregister(self, connection_id: str):
        for group in self._memberships.pop(connection_id, set()):
            self._discard_member(group, connection_id)
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is not None:
            # Sentinel lets the writer flush what is queued and exit
            outbox.put_nowait(None)
        logger.debug(f"Unregistered connection {connection_id} (local connections: {len(self._outboxes)})")

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._outboxes

    def join(self, connection_id: str, group: str) -> bool:
        if connection_id not in self._outboxes:
            logger.debug(f"Cannot add unknown connection {connection_id} to group {group}")
            return False
        self._groups.setdefault(group, set()).add(connection_id)
        self._memberships[connection_id].add(group)
        return True

    def leave(self, connection_id: str, group: str):
        self._discard_member(group, connection_id)
        groups = self._memberships.get(connection_id)
        if groups is not None:
            groups.discard(group)

    def discard_group(self, group: str):
        for connection_id in self._groups.pop(group, set()):
            groups = self._memberships.get(connection_id)
            if groups is not None:
                groups.discard(group)

    def members(self, group: str) -> Set[str]:
        return set(self._groups.get(group, set()))

    def send(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        return self._deliver_to_connection(connection_id, event, payload)

    def publish(self, group: str, event: str, payload: Dict[str, Any], skip: Optional[str] = None) -> int:
        return self._deliver_to_group(group, event, payload, skip)

    def _discard_member(self, group: str, connection_id: str):
        members = self._groups.get(group)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._groups[group]

    def _deliver_to_connection(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            logger.debug(f"Dropping {event} for vanished connection {connection_id}")
            return False
        outbox.put_nowait(make_frame(event, payload))
        return True

    def _deliver_to_group(self, group: str, event: str, payload: Dict[str, Any], skip: Optional[str] = None) -> int:
        delivered = 0
        for connection_id in list(self._groups.get(group, set())):
            if connection_id == skip:
                continue
            if self._deliver_to_connection(connection_id, event, payload):
                delivered += 1
        logger.debug(f"Delivered {event} to {delivered} connections in group {group}")
        return delivered


class RedisBackend(MemoryBackend):
    """Relays every delivery through a Redis pub/sub channel.

    Recipients are resolved against the local groups when a frame is
    published, and the envelope carries the exact connection ids. The listener
    only hands frames to outboxes it owns, so a group that changes or closes
    before the envelope comes back does not change who gets it.
    """

    def __init__(self, redis_client=None, pubsub_client=None):
        super().__init__()
        if redis_client is None:
            try:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
                redis_client.ping()
                logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
                raise
        if pubsub_client is None:
            # Separate connection for pub/sub (required by Redis)
            try:
                pubsub_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
                pubsub_client.ping()
                logger.info("Redis pub/sub client connected successfully")
            except Exception as e:
                logger.error(f"Failed to connect Redis pub/sub client: {e}", exc_info=True)
                raise
        self.redis_client = redis_client
        self.pubsub_client = pubsub_client
        self.instance_id = uuid.uuid4().hex
        # One worker keeps envelopes in publish order
        self._publish_pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="redis-relay")
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    async def start(self):
        self._pubsub = self.pubsub_client.pubsub()
        self._pubsub.subscribe(REDIS_EVENTS_CHANNEL)
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"Subscribed to Redis channel {REDIS_EVENTS_CHANNEL} as relay {self.instance_id}")

    async def stop(self):
        await self.flush()
        self._publish_pool.shutdown(wait=False)
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await super().stop()

    async def flush(self):
        """Wait until every envelope queued so far has been handed to Redis."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._publish_pool, lambda: None)

    def send(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        if connection_id not in self._outboxes:
            logger.debug(f"Dropping {event} for vanished connection {connection_id}")
            return False
        self._relay(event, payload, [connection_id])
        return True

    def publish(self, group: str, event: str, payload: Dict[str, Any], skip: Optional[str] = None) -> int:
        targets = sorted(self.members(group) - {skip})
        if not targets:
            logger.debug(f"No recipients for {event} in group {group}")
            return 0
        self._relay(event, payload, targets)
        return len(targets)

    def _relay(self, event: str, payload: Dict[str, Any], targets: List[str]):
        envelope = {"origin": self.instance_id, "event": event, "data": payload, "targets": targets}
        # Encoded on the caller side; the worker only sees the string
        try:
            self._publish_pool.submit(self._publish_envelope, event, json.dumps(envelope))
        except RuntimeError:
            logger.warning(f"Relay is stopped, dropping {event} for {len(targets)} connections")

    def _publish_envelope(self, event: str, raw: str) -> bool:
        try:
            subscribers = self.redis_client.publish(REDIS_EVENTS_CHANNEL, raw)
        except redis.RedisError as e:
            logger.error(f"Failed to relay {event}: {e}")
            return False
        logger.debug(f"Relayed {event}, {subscribers} subscribers")
        return True

    def handle_relay_message(self, raw: str) -> int:
        """Hand one envelope received from Redis to the outboxes this process owns."""
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing relay message: {e}")
            return 0

        targets = envelope.get("targets")
        if not isinstance(targets, list):
            logger.warning(f"Ignoring relay message without targets from {envelope.get('origin')}")
            return 0

        event = envelope.get("event")
        payload = envelope.get("data") or {}
        delivered = 0
        for connection_id in targets:
            # Connections owned by another process have no outbox here
            if connection_id in self._outboxes and self._deliver_to_connection(connection_id, event, payload):
                delivered += 1
        logger.debug(f"Relay message {event} from {envelope.get('origin')}: {delivered}/{len(targets)} local")
        return delivered

    async def _listen(self):
        logger.info(f"Starting Redis relay listener on {REDIS_EVENTS_CHANNEL}")
        loop = asyncio.get_running_loop()

        def get_message():
            """Blocking call to get next message from Redis pub/sub with timeout."""
            try:
                return self._pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
            except Exception as e:
                logger.error(f"Error in pubsub.get_message(): {e}", exc_info=True)
                return None

        try:
            while True:
                message = await loop.run_in_executor(None, get_message)
                if message is None:
                    continue
                if message.get("type") == "message":
                    self.handle_relay_message(message["data"])
        except asyncio.CancelledError:
            logger.info("Redis relay listener cancelled")
            raise
        finally:
            try:
                self._pubsub.close()
                logger.debug("Closed relay pub/sub connection")
            except Exception as e:
                logger.error(f"Error closing relay pub/sub: {e}")


def create_backend(kind: str = BROADCAST_BACKEND) -> MemoryBackend:
    if kind == "memory":
        return MemoryBackend()
    if kind == "redis":
        return RedisBackend()
    raise ValueError(f"Unknown broadcast backend: {kind}")
