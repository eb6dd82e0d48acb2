"""
Event Emitter — domain events for work items and lineage edges.

Publishes JSON messages to a sink chosen from EVENT_BUS_URL:
  - redis://…   → Redis PUBLISH on channel "<exchange>.<routing_key>"
  - memory://   → in-process recording backend (dev/testing)

Routing:
  work-item events → exchange "work_items", key "work_item.<type>"
  lineage events   → exchange "lineage",    key "lineage.<type>"

Events are built while a transaction is open but published only after it
commits (see ``publish_pending``). A failed publish is logged and
swallowed; the committed mutation stands.
"""

import json
import logging
import uuid
from collections import deque
from datetime import datetime, timezone

import redis

logger = logging.getLogger(__name__)

WORK_ITEM_EXCHANGE = "work_items"
LINEAGE_EXCHANGE = "lineage"

KIND_WORK_ITEM = "work_item"
KIND_LINEAGE = "lineage"

MEMORY_BACKEND_MAXLEN = 1000


# ── Backends ─────────────────────────────────────────────────────────────

class MemoryEventBackend:
    """Keeps the most recent ``maxlen`` published messages; used in dev and tests."""

    name = "memory"

    def __init__(self, maxlen=MEMORY_BACKEND_MAXLEN):
        self.published = deque(maxlen=maxlen)

    def publish(self, exchange, routing_key, message):
        self.published.append({
            "exchange": exchange,
            "routing_key": routing_key,
            "message": json.loads(message),
        })

    def messages(self, routing_key=None):
        """Decoded messages, optionally filtered by routing key."""
        return [
            p["message"] for p in self.published
            if routing_key is None or p["routing_key"] == routing_key
        ]

    def clear(self):
        self.published.clear()

    def ping(self):
        return True


class RedisEventBackend:
    """Redis pub/sub sink."""

    name = "redis"

    def __init__(self, url, client=None):
        self.client = client or redis.from_url(url, decode_responses=True)

    def publish(self, exchange, routing_key, message):
        self.client.publish(f"{exchange}.{routing_key}", message)

    def ping(self):
        return self.client.ping()


def backend_from_url(url):
    if not url or url.startswith("memory://"):
        return MemoryEventBackend()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisEventBackend(url)
    raise ValueError(f"Unsupported EVENT_BUS_URL scheme: {url.split('://')[0]}")


# ── Event builders ───────────────────────────────────────────────────────

def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def work_item_event(event_type, *, work_item_id, principal, data):
    """Envelope for work_item.<event_type>."""
    return {
        "id": str(uuid.uuid4()),
        "type": event_type,
        "work_item_id": work_item_id,
        "tenant_id": principal.tenant_id,
        "user_id": principal.id,
        "data": data,
        "timestamp": _now_iso(),
    }


def lineage_event(event_type, *, edge, principal):
    """Envelope for lineage.<event_type>."""
    return {
        "id": str(uuid.uuid4()),
        "type": event_type,
        "lineage_id": edge.id,
        "parent_id": edge.parent_id,
        "child_id": edge.child_id,
        "relation_type": edge.relation_type,
        "tenant_id": principal.tenant_id,
        "user_id": principal.id,
        "timestamp": _now_iso(),
    }


# ── Emitter ──────────────────────────────────────────────────────────────

class EventEmitter:
    """Publishes domain events to the configured backend.

    Usage:
        from workitems.services.event_emitter import event_emitter

        pending = []
        with db_transaction():
            ...
            pending.append((KIND_WORK_ITEM, work_item_event("created", ...)))
        event_emitter.publish_pending(pending)
    """

    def __init__(self, backend=None):
        self.backend = backend or MemoryEventBackend()

    def init_app(self, app):
        self.backend = backend_from_url(app.config.get("EVENT_BUS_URL", "memory://"))
        logger.info("Event emitter: using %s backend", self.backend.name)

    def publish(self, exchange, routing_key, payload):
        """Serialise and hand off one message. Never raises."""
        try:
            message = json.dumps(payload, default=str)
            self.backend.publish(exchange, routing_key, message)
        except Exception:
            logger.exception(
                "Failed to publish event exchange=%s routing_key=%s",
                exchange, routing_key,
                extra={"event_type": routing_key, "work_item_id": payload.get("work_item_id")},
            )
            return False
        logger.debug(
            "Event published exchange=%s routing_key=%s id=%s",
            exchange, routing_key, payload.get("id"),
        )
        return True

    def publish_work_item_event(self, event):
        return self.publish(WORK_ITEM_EXCHANGE, f"work_item.{event['type']}", event)

    def publish_lineage_event(self, event):
        return self.publish(LINEAGE_EXCHANGE, f"lineage.{event['type']}", event)

    def publish_pending(self, pending):
        """Publish ``(kind, event)`` pairs queued during a committed transaction."""
        for kind, event in pending:
            if kind == KIND_LINEAGE:
                self.publish_lineage_event(event)
            else:
                self.publish_work_item_event(event)

    def health_check(self):
        try:
            self.backend.ping()
            return {"status": "ok", "backend": self.backend.name}
        except Exception as exc:
            return {"status": "error", "backend": self.backend.name, "detail": str(exc)}


# Module-level singleton, configured by create_app() via init_app().
event_emitter = EventEmitter()
