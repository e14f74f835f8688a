"""
Live channel registry: best-effort real-time push.

Rooms:
    user:<id>          every connection of one user (joined on connect)
    project:<id>       viewers of one project (joined explicitly)
    project:<id>:team  the viewers who may also see tasks; clients never join

Each connection owns a bounded queue drained by the SSE stream endpoint.
A full queue drops its oldest event: delivery is at-most-once, and a
client that misses events re-reads persisted notifications on reconnect.

Uses Redis pub/sub when REDIS_URL points at a Redis server so that every
worker process sees every emit; falls back to in-process delivery for
development/testing.  Emission never raises.
"""

import json
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field

import redis
from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "cutroom.live"
REDIS_CHANNEL = "cutroom:live"


def user_room(user_id):
    return f"user:{user_id}"


def project_room(project_id):
    return f"project:{project_id}"


def team_room(project_id):
    return f"project:{project_id}:team"


@dataclass
class LiveEvent:
    name: str
    data: dict
    room: str
    ts: float = field(default_factory=time.time)

    def to_dict(self):
        return {"event": self.name, "room": self.room, "data": self.data, "ts": self.ts}


class _Connection:
    def __init__(self, user_id, queue_size):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.rooms = set()
        self.events = queue.Queue(maxsize=queue_size)

    def offer(self, event):
        try:
            self.events.put_nowait(event)
        except queue.Full:
            try:
                self.events.get_nowait()
            except queue.Empty:
                pass
            try:
                self.events.put_nowait(event)
            except queue.Full:
                return False
        return True


class ChannelRegistry:
    """Who is listening where, plus local fan-out to their queues."""

    def __init__(self, queue_size=100):
        self.queue_size = queue_size
        self._lock = threading.RLock()
        self._connections: dict[str, _Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._broker = None

    # ── Membership ────────────────────────────────────────────────────────

    def connect(self, user_id) -> str:
        conn = _Connection(user_id, self.queue_size)
        with self._lock:
            self._connections[conn.id] = conn
            self._join(conn, user_room(user_id))
        logger.debug("Live connect %s user=%s", conn.id, user_id, extra={"user_id": user_id})
        return conn.id

    def disconnect(self, connection_id):
        with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return
            for room in conn.rooms:
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._rooms[room]
        logger.debug("Live disconnect %s", connection_id)

    def join_project_channel(self, connection_id, project_id, team=False) -> bool:
        """Join the project room; *team* also joins the task-level room."""
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                return False
            self._join(conn, project_room(project_id))
            if team:
                self._join(conn, team_room(project_id))
        return True

    def leave_project_channel(self, connection_id, project_id) -> bool:
        room = project_room(project_id)
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None or room not in conn.rooms:
                return False
            for name in (room, team_room(project_id)):
                conn.rooms.discard(name)
                members = self._rooms.get(name, set())
                members.discard(connection_id)
                if not members:
                    self._rooms.pop(name, None)
        return True

    def _join(self, conn, room):
        conn.rooms.add(room)
        self._rooms.setdefault(room, set()).add(conn.id)

    def owner_of(self, connection_id):
        conn = self._connections.get(connection_id)
        return conn.user_id if conn else None

    def rooms_for(self, connection_id) -> set:
        conn = self._connections.get(connection_id)
        return set(conn.rooms) if conn else set()

    def connection_count(self, room=None) -> int:
        with self._lock:
            if room is None:
                return len(self._connections)
            return len(self._rooms.get(room, ()))

    def reset(self):
        with self._lock:
            self._connections.clear()
            self._rooms.clear()

    # ── Emission ──────────────────────────────────────────────────────────

    def emit_to_user(self, user_id, event, data=None):
        self._publish(user_room(user_id), event, data or {})

    def emit_to_project(self, project_id, event, data=None, team_only=False):
        room = team_room(project_id) if team_only else project_room(project_id)
        self._publish(room, event, data or {})

    def _publish(self, room, event, data):
        try:
            if self._broker is not None:
                self._broker.publish(room, event, data)
            else:
                self.deliver_local(room, event, data)
        except Exception:
            logger.warning("Live emit failed for %s/%s", room, event, exc_info=True,
                           extra={"event_type": "live_emit_failure"})

    def deliver_local(self, room, event, data) -> int:
        with self._lock:
            targets = [self._connections[cid] for cid in self._rooms.get(room, ()) if cid in self._connections]
        delivered = 0
        for conn in targets:
            if conn.offer(LiveEvent(name=event, data=data, room=room)):
                delivered += 1
        return delivered

    def listen(self, connection_id, timeout=None):
        """Block up to *timeout* seconds for the next event; None on timeout."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return None
        try:
            return conn.events.get(timeout=timeout) if timeout else conn.events.get_nowait()
        except queue.Empty:
            return None

    def drain(self, connection_id) -> list:
        events = []
        while True:
            evt = self.listen(connection_id)
            if evt is None:
                return events
            events.append(evt)

    def attach_broker(self, broker):
        self._broker = broker


class RedisBroker:
    """Publishes emits on one Redis channel; a listener thread re-delivers locally."""

    RETRY_MAX_SECONDS = 30.0

    def __init__(self, client, registry, retry_delay=1.0):
        self.client = client
        self.registry = registry
        self.retry_delay = retry_delay
        self._stopped = threading.Event()
        self._thread = None

    def publish(self, room, event, data):
        self.client.publish(REDIS_CHANNEL, json.dumps({"room": room, "event": event, "data": data}, default=str))

    def start(self):
        self._thread = threading.Thread(target=self.run_forever, name="cutroom-live-subscriber", daemon=True)
        self._thread.start()

    def stop(self):
        self._stopped.set()

    def run_forever(self):
        """Subscribe and relay until stopped, resubscribing after Redis errors."""
        delay = self.retry_delay
        while not self._stopped.is_set():
            pubsub = self.client.pubsub(ignore_subscribe_messages=True)
            try:
                pubsub.subscribe(REDIS_CHANNEL)
                delay = self.retry_delay
                for message in pubsub.listen():
                    self._relay(message)
            except redis.RedisError:
                logger.warning(
                    "Live subscriber lost Redis, resubscribing in %.1fs", delay, exc_info=True,
                    extra={"event_type": "live_subscriber_error"},
                )
            finally:
                pubsub.close()
            if self._stopped.wait(delay):
                break
            delay = min(delay * 2, self.RETRY_MAX_SECONDS)

    def _relay(self, message):
        try:
            payload = json.loads(message["data"])
            self.registry.deliver_local(payload["room"], payload["event"], payload.get("data") or {})
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed live message", exc_info=True)


# ── App wiring ───────────────────────────────────────────────────────────────

def init_live_channels(app):
    registry = ChannelRegistry(queue_size=app.config.get("LIVE_QUEUE_SIZE", 100))
    redis_url = app.config.get("REDIS_URL") or ""
    if redis_url and not redis_url.startswith("memory://"):
        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            broker = RedisBroker(client, registry)
            broker.start()
            registry.attach_broker(broker)
            logger.info("Live channels: using Redis at %s", redis_url.split("@")[-1])
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), live channels stay in-process", exc)
    app.extensions[EXTENSION_KEY] = registry
    return registry


def get_registry() -> ChannelRegistry:
    return current_app.extensions[EXTENSION_KEY]
