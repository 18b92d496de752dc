"""Message text flattening and normalization."""

import re
from datetime import UTC, datetime
from typing import Any

_SLACK_LINK = re.compile(r"<(https?://[^>|]+)\|([^>]+)>")
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)]+)\)")
_HTML_LINK = re.compile(r"""<a\s+href=["']([^"']+)["'][^>]*>([^<]+)</a>""")
_URL = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")
_DISALLOWED = re.compile(r"[^\w\s.,\-:/?=&%]")
_WHITESPACE = re.compile(r"\s+")


def timestamp_to_rfc3339(ts: str) -> str:
    """Convert an upstream ``seconds.micros`` timestamp to RFC 3339 UTC.

    Raises:
        ValueError: If the timestamp is not of that form.
    """
    seconds, sep, micros = ts.partition(".")
    if not sep or not seconds.isdigit() or not micros.isdigit():
        raise ValueError(f"invalid slack timestamp format: {ts!r}")
    moment = datetime.fromtimestamp(int(seconds), UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def attachment_to_text(attachment: dict[str, Any]) -> str:
    """Render one legacy attachment as a single line."""
    parts = []
    for key, label in (
        ("title", "Title"),
        ("author_name", "Author"),
        ("pretext", "Pretext"),
        ("text", "Text"),
    ):
        if attachment.get(key):
            parts.append(f"{label}: {attachment[key]}")
    if attachment.get("footer"):
        parts.append(f"Footer: {attachment['footer']} @ {_footer_time(attachment.get('ts'))}")

    result = "; ".join(parts)
    for char in "\n\r\t":
        result = result.replace(char, " ")
    return result.replace("(", "[").replace(")", "]").strip()


def _footer_time(ts: Any) -> str:
    try:
        return timestamp_to_rfc3339(f"{int(float(ts))}.000000")
    except (TypeError, ValueError):
        return ""


def attachments_to_text(message_text: str, attachments: list[dict[str, Any]] | None) -> str:
    """Render attachments as a suffix for the message text."""
    descriptions = [d for d in (attachment_to_text(a) for a in attachments or []) if d]
    if not descriptions:
        return ""
    prefix = ". " if message_text else ""
    return prefix + ", ".join(descriptions)


def _text_object(obj: dict[str, Any] | None) -> str:
    return (obj or {}).get("text") or ""


def _join(parts: list[str]) -> str:
    return " ".join(p for p in parts if p)


def _rich_text_section(section: dict[str, Any]) -> str:
    parts = []
    for element in section.get("elements") or []:
        kind = element.get("type")
        if kind == "text":
            parts.append(element.get("text") or "")
        elif kind == "link":
            parts.append(element.get("text") or element.get("url") or "")
        elif kind == "user" and element.get("user_id"):
            parts.append("@" + element["user_id"])
        elif kind == "channel" and element.get("channel_id"):
            parts.append("#" + element["channel_id"])
        elif kind == "broadcast" and element.get("range"):
            parts.append("@" + element["range"])
    return _join(parts)


def _rich_text_element(element: dict[str, Any]) -> str:
    kind = element.get("type")
    if kind in ("rich_text_section", "rich_text_quote"):
        return _rich_text_section(element)
    if kind == "rich_text_preformatted":
        return _join(
            [e.get("text") or "" for e in element.get("elements") or [] if e.get("type") == "text"]
        )
    if kind == "rich_text_list":
        ordered = element.get("style") == "ordered"
        items = []
        for i, item in enumerate(element.get("elements") or [], start=1):
            text = _rich_text_element(item)
            if text:
                items.append(f"{i}. {text}" if ordered else f"- {text}")
        return _join(items)
    return ""


def _block_text(block: dict[str, Any]) -> str:
    kind = block.get("type")
    if kind == "section":
        return _join(
            [_text_object(block.get("text"))]
            + [_text_object(f) for f in block.get("fields") or []]
        )
    if kind == "context":
        return _join(
            [
                _text_object(e)
                for e in block.get("elements") or []
                if e.get("type") in ("plain_text", "mrkdwn")
            ]
        )
    if kind == "rich_text":
        return _join([_rich_text_element(e) for e in block.get("elements") or []])
    if kind == "header":
        return _text_object(block.get("text"))
    if kind == "actions":
        parts = []
        for element in block.get("elements") or []:
            if element.get("type") == "button":
                parts.append(_text_object(element.get("text")))
            elif element.get("placeholder"):
                parts.append(_text_object(element.get("placeholder")))
        return _join(parts)
    return ""


def blocks_to_text(blocks: list[dict[str, Any]] | None) -> str:
    """Extract readable text from Block Kit blocks as a text suffix."""
    texts = [t for t in (_block_text(b) for b in blocks or []) if t]
    if not texts:
        return ""
    return ". " + ". ".join(texts)


def _replace_links(text: str, pattern: re.Pattern[str], url_group: int, label_group: int) -> str:
    def replace(match: re.Match[str]) -> str:
        replacement = f"{match.group(url_group)} - {match.group(label_group)}"
        # Links followed by more text are separated by a comma
        if match.string[match.end():].strip():
            replacement += ","
        return replacement

    return pattern.sub(replace, text)


def filter_special_chars(text: str) -> str:
    """Rewrite links as ``url - label`` and strip markup characters.

    URLs are preserved verbatim, everything else is reduced to word
    characters, whitespace and basic punctuation.
    """
    text = _replace_links(text, _SLACK_LINK, 1, 2)
    text = _replace_links(text, _MARKDOWN_LINK, 2, 1)
    text = _replace_links(text, _HTML_LINK, 1, 2)

    urls = _URL.findall(text)
    protected = text
    for i, url in enumerate(urls):
        protected = protected.replace(url, f"___URL_PLACEHOLDER_{i}___", 1)
    cleaned = _DISALLOWED.sub("", protected)
    for i, url in enumerate(urls):
        cleaned = cleaned.replace(f"___URL_PLACEHOLDER_{i}___", url, 1)
    return _WHITESPACE.sub(" ", cleaned).strip()


def flatten_message_text(message: dict[str, Any], include_blocks: bool = True) -> str:
    """Flatten a message's text, attachments and blocks into one line."""
    text = message.get("text") or ""
    text += attachments_to_text(text, message.get("attachments"))
    if include_blocks:
        text += blocks_to_text(message.get("blocks"))
    return filter_special_chars(text)
