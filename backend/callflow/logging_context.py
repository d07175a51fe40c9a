"""Conversation-id correlation for log records.

Every log line emitted while a webhook delivery is being processed carries
the provider conversation id, so one call can be traced through all stages.
"""

import logging
from contextvars import ContextVar

_conversation_id: ContextVar[str] = ContextVar("conversation_id", default="-")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(conversation_id)s] %(message)s"


def set_conversation_id(conversation_id: str) -> None:
    _conversation_id.set(conversation_id or "-")


def get_conversation_id() -> str:
    return _conversation_id.get()


class ConversationIdFilter(logging.Filter):
    """Injects ``conversation_id`` into every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conversation_id = _conversation_id.get()  # type: ignore[attr-defined]
        return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, ConversationIdFilter) for f in handler.filters):
            handler.addFilter(ConversationIdFilter())
