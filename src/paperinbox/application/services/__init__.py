from paperinbox.application.services.identifier_cache import IdentifierCache
from paperinbox.application.services.inbox_manager import InboxManager
from paperinbox.application.services.paper_fetch_service import PaperFetchService

__all__ = [
    "IdentifierCache",
    "InboxManager",
    "PaperFetchService",
]
