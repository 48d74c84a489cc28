"""Attachment framing for chat-completions and Responses style payloads."""

from __future__ import annotations

import base64
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from inference_gateway.types import Attachment, Turn

DEFAULT_MIME = "application/octet-stream"
DEFAULT_IMAGE_MIME = "image/jpeg"

_MIME_BY_EXTENSION = {
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


def mime_for_filename(filename: str) -> str:
    extension = PurePath(filename).suffix.lstrip(".").lower()
    return _MIME_BY_EXTENSION.get(extension, DEFAULT_MIME)


def data_url(attachment: Attachment) -> str:
    mime = attachment.mime
    if attachment.kind == "image" and not mime.startswith("image/"):
        mime = DEFAULT_IMAGE_MIME
    encoded = base64.b64encode(attachment.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def encode_chat_content(turn: Turn, image_detail: str = "auto") -> str | list[dict[str, Any]]:
    """Content for a chat-completions message: plain text, or an ordered part list."""
    if not turn.attachments:
        return turn.text
    parts: list[dict[str, Any]] = [{"type": "text", "text": turn.text}]
    for attachment in turn.attachments:
        url = data_url(attachment)
        if attachment.kind == "image":
            parts.append({"type": "image_url", "image_url": {"url": url, "detail": image_detail}})
        else:
            parts.append({"type": "file", "file": {"filename": attachment.filename, "file_data": url}})
    return parts


def encode_responses_message(
    turn: Turn,
    role: str | None = None,
    image_detail: str = "auto",
) -> dict[str, Any]:
    """Input message for Responses APIs (``input_text``/``input_image``/``input_file`` parts)."""
    role = role or turn.role
    if not turn.attachments:
        return {"role": role, "content": turn.text}
    content: list[dict[str, Any]] = [{"type": "input_text", "text": turn.text}]
    for attachment in turn.attachments:
        url = data_url(attachment)
        if attachment.kind == "image":
            content.append({"type": "input_image", "image_url": url, "detail": image_detail})
        else:
            content.append({"type": "input_file", "filename": attachment.filename, "file_data": url})
    return {"role": role, "content": content}
