"""
SIGEDOC
Notification Service.

Central service for creating and querying in-app notifications, plus the
derivation event dispatcher used by the workflow once a transition has
committed.

Derivation events look like::

    {
        "type": "derivation",
        "event": "created" | "accepted",
        "derivation_id": 7,
        "document_id": 42,
        "registration_number": "MP-2026-000042",
        "source_area_id": 1,
        "destination_area_id": 3,
    }

Delivery is fire-and-forget: a failing listener or a failing insert is
logged and never propagates back into the workflow.
"""

import logging
from datetime import datetime, timezone

from sigedoc.core.exceptions import NotFoundError
from sigedoc.models import db
from sigedoc.models.notification import Notification

logger = logging.getLogger(__name__)

# Callables invoked with every derivation event after the built-in
# notification rows are written.
_derivation_listeners = []


def register_derivation_listener(callback):
    """Subscribe *callback(event: dict)* to derivation events. Returns the callback."""
    if callback not in _derivation_listeners:
        _derivation_listeners.append(callback)
    return callback


def unregister_derivation_listener(callback):
    if callback in _derivation_listeners:
        _derivation_listeners.remove(callback)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_area_id, title, message="", category="system",
               recipient_user_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient_area_id=recipient_area_id,
            recipient_user_id=recipient_user_id,
            title=title,
            message=message,
            category=category,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _visible_to(identity):
        # Area-wide notifications plus the ones addressed to this user
        return Notification.query.filter(
            Notification.recipient_area_id == identity.home_area_id,
            (Notification.recipient_user_id.is_(None))
            | (Notification.recipient_user_id == identity.user_id),
        )

    @staticmethod
    def list_for_identity(identity, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for the caller's area, newest first."""
        q = NotificationService._visible_to(identity)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(identity):
        return NotificationService._visible_to(identity).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(identity, notification_id):
        """Mark a single notification as read.  Other areas' notifications look like 404."""
        notif = NotificationService._visible_to(identity).filter(
            Notification.id == notification_id
        ).first()
        if notif is None:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(identity):
        now = datetime.now(timezone.utc)
        ids = [n.id for n in NotificationService._visible_to(identity).filter_by(is_read=False)]
        if not ids:
            return 0
        count = Notification.query.filter(Notification.id.in_(ids)).update(
            {"is_read": True, "read_at": now}, synchronize_session="fetch",
        )
        db.session.commit()
        return count

    # ── Derivation Integration ────────────────────────────────────────────

    @staticmethod
    def notify_derivation(event):
        """Create the in-app notification matching a derivation event."""
        reg = event.get("registration_number") or f"#{event['document_id']}"
        if event.get("event") == "accepted":
            return NotificationService.create(
                recipient_area_id=event["source_area_id"],
                title=f"Derivación aceptada: {reg}",
                message="El área de destino aceptó el documento derivado.",
                category="derivation",
                entity_type="document",
                entity_id=event["document_id"],
            )
        return NotificationService.create(
            recipient_area_id=event["destination_area_id"],
            title=f"Nuevo documento derivado: {reg}",
            message=event.get("observations") or "Tiene un documento pendiente de aceptación.",
            category="derivation",
            entity_type="document",
            entity_id=event["document_id"],
        )


def dispatch_derivation_event(event: dict) -> None:
    """Deliver *event* to the notification table and every registered listener.

    Never raises.
    """
    try:
        NotificationService.notify_derivation(event)
    except Exception:
        db.session.rollback()
        logger.exception("Failed to store notification for derivation event %s", event)

    for listener in list(_derivation_listeners):
        try:
            listener(event)
        except Exception:
            logger.exception("Derivation listener %r failed", listener)
