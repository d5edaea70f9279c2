"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access
from app.services import tiptap_service
from app.services import storage_service
from app.services import realtime_service
from app.services import identity_service
from app.services import space_service
from app.services import participant_service
from app.services import entry_service
from app.services import mail_bridge_service
from app.services import convo_service

__all__ = [
    "tiptap_service",
    "storage_service",
    "realtime_service",
    "identity_service",
    "space_service",
    "participant_service",
    "entry_service",
    "mail_bridge_service",
    "convo_service",
]
