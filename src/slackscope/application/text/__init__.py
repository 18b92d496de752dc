"""Message text processing."""

from slackscope.application.text.processor import (
    filter_special_chars,
    flatten_message_text,
    timestamp_to_rfc3339,
)

__all__ = ["filter_special_chars", "flatten_message_text", "timestamp_to_rfc3339"]
