"""
Firebase service - Firestore persistence for presence, receipts and call logs.

Firestore Collections:
- users/{uid}: lastSeenAt, isOnline
- messages/{messageId}: isRead/readAt, isDelivered/deliveredAt (receiverId guards updates)
- calls/{callId}: call log with participants, status and timestamps

Every write here is a side effect of a relayed signal. Methods return True on
success, False when Firestore raised, and None when Firestore is not
configured or there was nothing to update. They never raise.
"""
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import firebase_admin
from django.utils import timezone
from firebase_admin import credentials, firestore

logger = logging.getLogger("signaling")

# Firebase Admin initialization
_firebase_app = None
_firestore_client = None
_firebase_init_attempted = False


def get_firebase_app():
    """Get or initialize Firebase Admin app"""
    global _firebase_app, _firebase_init_attempted

    if _firebase_app is not None:
        return _firebase_app

    if _firebase_init_attempted:
        # Already tried and failed
        return None

    _firebase_init_attempted = True

    use_emulator = os.environ.get("FIREBASE_USE_EMULATOR", "false").lower() == "true"
    project_id = os.environ.get("FIREBASE_PROJECT_ID")

    logger.info(f"Firebase init: use_emulator={use_emulator}, project_id={project_id}")

    options = {"projectId": project_id} if project_id else None
    cred = None

    if use_emulator:
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
        options = {"projectId": project_id or "demo-project"}
    else:
        service_account_json = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
        service_account_path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")

        if service_account_json:
            try:
                cred = credentials.Certificate(json.loads(service_account_json))
                logger.info("Using FIREBASE_SERVICE_ACCOUNT env var")
            except (json.JSONDecodeError, ValueError) as e:
                logger.error(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
                return None
        elif service_account_path and os.path.exists(service_account_path):
            cred = credentials.Certificate(service_account_path)
            logger.info(f"Using service account from {service_account_path}")
        else:
            logger.warning("Firebase credentials not found - persistence is disabled")
            return None

    try:
        _firebase_app = firebase_admin.initialize_app(cred, options=options)
        logger.info(f"Firebase Admin initialized (emulator={use_emulator})")
    except ValueError:
        # Already initialized elsewhere in the process
        _firebase_app = firebase_admin.get_app()
    except Exception as e:
        logger.error(f"Firebase init failed: {e}")
        return None

    return _firebase_app


def get_firestore():
    """Get Firestore client"""
    global _firestore_client

    if _firestore_client is not None:
        return _firestore_client

    app = get_firebase_app()
    if app is None:
        return None

    try:
        _firestore_client = firestore.client(app)
        return _firestore_client
    except Exception as e:
        logger.error(f"Failed to get Firestore client: {e}")
        return None


class FirestoreService:
    """Persistence collaborator backed by Firestore"""

    USERS_COLLECTION = "users"
    MESSAGES_COLLECTION = "messages"
    CALLS_COLLECTION = "calls"

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        """Lazy initialization of Firestore client"""
        if self._db is None:
            self._db = get_firestore()
        return self._db

    def is_available(self) -> bool:
        return self.db is not None

    # =========================================================================
    # Presence
    # =========================================================================

    def update_last_seen(self, user_id: str, last_seen_at: datetime, is_online: bool = True) -> Optional[bool]:
        if not self.db:
            return None

        try:
            self.db.collection(self.USERS_COLLECTION).document(user_id).set(
                {"lastSeenAt": last_seen_at, "isOnline": is_online},
                merge=True,
            )
            return True
        except Exception as e:
            logger.error(f"Error updating lastSeen for {user_id}: {e}")
            return False

    # =========================================================================
    # Receipts
    # =========================================================================

    def _mark_message(self, message_id: str, reader_id: str, fields: Dict[str, Any]) -> Optional[bool]:
        """Update a message only if ``reader_id`` is its receiver."""
        if not self.db:
            return None

        try:
            doc_ref = self.db.collection(self.MESSAGES_COLLECTION).document(str(message_id))
            doc = doc_ref.get()
            if not doc.exists:
                logger.info(f"Message not found: {message_id}")
                return None
            if str((doc.to_dict() or {}).get("receiverId")) != reader_id:
                logger.warning(f"Message {message_id} is not addressed to {reader_id}")
                return None
            doc_ref.update(fields)
            return True
        except Exception as e:
            logger.error(f"Error updating message {message_id}: {e}")
            return False

    def mark_read(self, message_id: str, reader_id: str) -> Optional[bool]:
        now = timezone.now()
        return self._mark_message(message_id, reader_id, {
            "isRead": True,
            "readAt": now,
            "isDelivered": True,
        })

    def mark_delivered(self, message_id: str, reader_id: str) -> Optional[bool]:
        return self._mark_message(message_id, reader_id, {
            "isDelivered": True,
            "deliveredAt": timezone.now(),
        })

    # =========================================================================
    # Call log
    # =========================================================================

    def create_call_record(
        self,
        call_id: str,
        channel_name: str,
        caller_id: str,
        callee_id: str,
        caller_name: str = "",
    ) -> Optional[bool]:
        """
        Create a call log entry.

        Document structure at calls/{callId}:
        {
            "callId": "uuid",
            "channelName": "conv-1-2",
            "callerId": "1",
            "calleeId": "2",
            "callerNameSnapshot": "Grace",
            "createdAt": Timestamp,
            "answeredAt": null,
            "endedAt": null,
            "durationSec": null,
            "status": "ringing"
        }
        """
        if not self.db:
            return None

        try:
            self.db.collection(self.CALLS_COLLECTION).document(call_id).set({
                "callId": call_id,
                "channelName": channel_name,
                "callerId": caller_id,
                "calleeId": callee_id,
                "callerNameSnapshot": caller_name or caller_id,
                "createdAt": timezone.now(),
                "answeredAt": None,
                "endedAt": None,
                "durationSec": None,
                "status": "ringing",
            })
            logger.info(f"Created call record: {call_id}")
            return True
        except Exception as e:
            logger.error(f"Error creating call record: {e}")
            return False

    def update_call_status(self, call_id: str, status: str, **kwargs) -> Optional[bool]:
        """
        Update call status.

        Valid statuses: ringing, connected, rejected, timed_out, ended, cancelled

        Additional kwargs:
            - answeredAt: datetime when call was answered
            - endedAt: datetime when call ended
            - durationSec: int duration in seconds
        """
        if not self.db:
            return None

        update_data = {"status": status}
        for key in ["answeredAt", "endedAt", "durationSec"]:
            if key in kwargs:
                update_data[key] = kwargs[key]

        try:
            self.db.collection(self.CALLS_COLLECTION).document(call_id).set(update_data, merge=True)
            return True
        except Exception as e:
            logger.error(f"Error updating call status: {e}")
            return False
