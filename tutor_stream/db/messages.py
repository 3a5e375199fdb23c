"""Persistence of completed tutoring replies (messages table)."""

from functools import lru_cache
from typing import Any, Protocol

from tutor_stream.core.config import get_settings
from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_tutor import AssistantMessage

logger = get_logger(__name__)


class ConversationStore(Protocol):
    def save_message(
        self, document_id: str | None, user_id: str | None, message: AssistantMessage
    ) -> None:
        ...


def _message_row(
    document_id: str | None, user_id: str | None, message: AssistantMessage
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "role": message.role,
        "content": message.content,
        "annotations": [d.model_dump() for d in message.annotations],
    }
    if document_id:
        row["document_id"] = document_id
    if user_id:
        row["user_id"] = user_id
    return row


class SupabaseConversationStore:
    """Inserts each finished reply into the ``messages`` table."""

    def __init__(self, client: Any):
        self._client = client

    def save_message(
        self, document_id: str | None, user_id: str | None, message: AssistantMessage
    ) -> None:
        row = _message_row(document_id, user_id, message)
        result = self._client.table("messages").insert(row).execute()
        if not result.data:
            raise ValueError("No data returned from message insert")


class InMemoryConversationStore:
    """Keeps rows in a list. Used when Supabase is not configured."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def save_message(
        self, document_id: str | None, user_id: str | None, message: AssistantMessage
    ) -> None:
        self.rows.append(_message_row(document_id, user_id, message))


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    settings = get_settings()
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE_KEY:
        from tutor_stream.db.supabase_client import get_supabase

        return SupabaseConversationStore(get_supabase())
    logger.info("Supabase not configured, keeping conversation history in memory")
    return InMemoryConversationStore()
