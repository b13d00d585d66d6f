from fastapi import WebSocket, WebSocketDisconnect, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from typing import Dict, Set, Optional
import asyncio
import json
import logging
import threading
from datetime import datetime

from ticketa.config import settings
from ticketa.database import get_session_factory

logger = logging.getLogger(__name__)

class TicketSubscription:
    """One websocket's queue of ticket updates for a trip"""

    def __init__(self, trip_id: int, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.trip_id = trip_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, message: dict):
        """Runs on the subscriber's loop; drops the message when the queue is full"""
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Dropped ticket update for trip %s (slow subscriber)", self.trip_id)

class TicketUpdateManager:
    """
    Fan-out of ticket UPDATE events to websocket subscribers, keyed by trip.

    Publishers are sync request handlers running in the threadpool, so
    messages are handed to each subscriber's event loop with
    ``call_soon_threadsafe``. Delivery is at-most-once with no replay.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self.trip_subscriptions: Dict[int, Set[TicketSubscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, trip_id: int) -> TicketSubscription:
        """Register a subscriber; must be called from a running event loop"""
        subscription = TicketSubscription(trip_id, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self.trip_subscriptions.setdefault(trip_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: TicketSubscription):
        with self._lock:
            subs = self.trip_subscriptions.get(subscription.trip_id)
            if subs is None:
                return
            subs.discard(subscription)
            if not subs:
                del self.trip_subscriptions[subscription.trip_id]

    def subscriber_count(self, trip_id: int) -> int:
        with self._lock:
            return len(self.trip_subscriptions.get(trip_id, ()))

    def publish(self, trip_id: int, message: dict) -> int:
        """Queue a message for every subscriber of the trip; returns how many were reached"""
        with self._lock:
            subscribers = list(self.trip_subscriptions.get(trip_id, ()))

        delivered = 0
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription.offer, message)
                delivered += 1
            except RuntimeError:
                # Subscriber's loop is closed
                self.unsubscribe(subscription)
        return delivered

    def publish_ticket_update(self, ticket) -> int:
        """Broadcast the new state of a ticket row to viewers of its trip"""
        message = {
            "type": "ticket_update",
            "event": "UPDATE",
            "trip_id": ticket.trip_id,
            "ticket": {
                "id": ticket.id,
                "passenger_name": ticket.passenger_name,
                "seat_number": ticket.seat_number,
                "status": ticket.status,
                "scanned_at": ticket.scanned_at.isoformat() if ticket.scanned_at else None
            },
            "timestamp": datetime.now().isoformat()
        }
        return self.publish(ticket.trip_id, message)

# Global ticket update manager instance
ticket_updates = TicketUpdateManager(queue_size=settings.REALTIME_QUEUE_SIZE)

async def _forward_updates(websocket: WebSocket, subscription: TicketSubscription):
    while True:
        message = await subscription.queue.get()
        await websocket.send_json(message)

def _authorize_feed(session_factory, token: Optional[str], trip_id: int) -> bool:
    from ticketa.trips.service import TripService

    with session_factory() as db:
        identity = TripService.identity_from_token(db, token)
        return identity is not None and TripService.can_view_operations(db, identity, trip_id)

async def trip_tickets_websocket(
    websocket: WebSocket,
    trip_id: int,
    token: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory)
):
    """Live ticket status feed for one trip (boarding progress dashboards)"""
    if not await run_in_threadpool(_authorize_feed, session_factory, token, trip_id):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = ticket_updates.subscribe(trip_id)

    await websocket.send_json({
        "type": "subscription_confirmed",
        "trip_id": trip_id,
        "timestamp": datetime.now().isoformat()
    })
    forward_task = asyncio.create_task(_forward_updates(websocket, subscription))

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "timestamp": datetime.now().isoformat()
                })
    except WebSocketDisconnect:
        pass
    finally:
        forward_task.cancel()
        ticket_updates.unsubscribe(subscription)
        try:
            await forward_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Ticket feed for trip %s stopped sending: %s", trip_id, e)
