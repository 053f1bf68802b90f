"""Typed message payloads.

Every message type has one payload model. A payload knows how to render
itself on the LINE wire, how it reads in a conversation preview, and which
``messages`` columns it fills. Building rows through :meth:`columns` is what
keeps "one payload shape per message type" true for every stored message.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from inbox.core.errors import ValidationError
from inbox.models.enums import MessageType

DEFAULT_AUDIO_DURATION_MS = 60000

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def _empty_columns() -> dict[str, Any]:
    return {
        "content": None,
        "media_url": None,
        "sticker_id": None,
        "package_id": None,
        "flex_content": None,
    }


def video_preview_url(url: str) -> str:
    """Preview image convention for uploaded videos: same path with a .jpg extension."""

    if _EXTENSION_RE.search(url):
        return _EXTENSION_RE.sub(".jpg", url)
    return url


class BasePayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str

    @property
    def message_type(self) -> MessageType:
        return MessageType(self.type)

    def to_line(self) -> dict[str, Any]:
        raise NotImplementedError

    def preview(self) -> str:
        raise NotImplementedError

    def _fill(self) -> dict[str, Any]:
        raise NotImplementedError

    def columns(self) -> dict[str, Any]:
        values = _empty_columns()
        values.update(self._fill())
        values["message_type"] = self.message_type
        return values


class TextPayload(BasePayload):
    type: Literal["text"] = "text"
    text: str = Field(..., min_length=1, max_length=5000)

    def to_line(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}

    def preview(self) -> str:
        return self.text

    def _fill(self) -> dict[str, Any]:
        return {"content": self.text}


class ImagePayload(BasePayload):
    type: Literal["image"] = "image"
    url: str
    preview_url: str | None = None

    def to_line(self) -> dict[str, Any]:
        return {
            "type": "image",
            "originalContentUrl": self.url,
            "previewImageUrl": self.preview_url or self.url,
        }

    def preview(self) -> str:
        return "[Image]"

    def _fill(self) -> dict[str, Any]:
        return {"media_url": self.url}


class VideoPayload(BasePayload):
    type: Literal["video"] = "video"
    url: str
    preview_url: str | None = None

    def to_line(self) -> dict[str, Any]:
        return {
            "type": "video",
            "originalContentUrl": self.url,
            "previewImageUrl": self.preview_url or video_preview_url(self.url),
        }

    def preview(self) -> str:
        return "[Video]"

    def _fill(self) -> dict[str, Any]:
        return {"media_url": self.url}


class AudioPayload(BasePayload):
    type: Literal["audio"] = "audio"
    url: str
    duration: int = Field(default=DEFAULT_AUDIO_DURATION_MS, gt=0)

    def to_line(self) -> dict[str, Any]:
        return {"type": "audio", "originalContentUrl": self.url, "duration": self.duration}

    def preview(self) -> str:
        return "[Audio]"

    def _fill(self) -> dict[str, Any]:
        return {"media_url": self.url}


class FilePayload(BasePayload):
    """Inbound only; the Messaging API has no outgoing file message."""

    type: Literal["file"] = "file"
    url: str

    def to_line(self) -> dict[str, Any]:
        raise ValidationError("File messages cannot be sent through LINE")

    def preview(self) -> str:
        return "[File]"

    def _fill(self) -> dict[str, Any]:
        return {"media_url": self.url}


class LocationPayload(BasePayload):
    type: Literal["location"] = "location"
    title: str | None = None
    address: str | None = None
    latitude: float
    longitude: float

    def to_line(self) -> dict[str, Any]:
        return {
            "type": "location",
            "title": self.title or "Location",
            "address": self.address or "",
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    def preview(self) -> str:
        return "[Location]"

    def _fill(self) -> dict[str, Any]:
        return {
            "content": json.dumps(
                {
                    "title": self.title,
                    "address": self.address,
                    "latitude": self.latitude,
                    "longitude": self.longitude,
                },
                ensure_ascii=False,
            )
        }


class StickerPayload(BasePayload):
    type: Literal["sticker"] = "sticker"
    package_id: str = Field(..., min_length=1)
    sticker_id: str = Field(..., min_length=1)

    def to_line(self) -> dict[str, Any]:
        return {"type": "sticker", "packageId": self.package_id, "stickerId": self.sticker_id}

    def preview(self) -> str:
        return "[Sticker]"

    def _fill(self) -> dict[str, Any]:
        return {"sticker_id": self.sticker_id, "package_id": self.package_id}


class FlexPayload(BasePayload):
    type: Literal["flex"] = "flex"
    alt_text: str = Field(default="[Flex Message]", min_length=1, max_length=400)
    contents: dict[str, Any]

    def to_line(self) -> dict[str, Any]:
        return {"type": "flex", "altText": self.alt_text, "contents": self.contents}

    def preview(self) -> str:
        return self.alt_text

    def _fill(self) -> dict[str, Any]:
        return {"content": self.alt_text, "flex_content": self.contents}


class TemplatePayload(BasePayload):
    type: Literal["template"] = "template"
    alt_text: str = Field(default="[Template]", min_length=1, max_length=400)
    template: dict[str, Any]

    def to_line(self) -> dict[str, Any]:
        return {"type": "template", "altText": self.alt_text, "template": self.template}

    def preview(self) -> str:
        return self.alt_text

    def _fill(self) -> dict[str, Any]:
        return {"content": self.alt_text, "flex_content": self.template}


MessagePayload = Annotated[
    Union[
        TextPayload,
        ImagePayload,
        VideoPayload,
        AudioPayload,
        FilePayload,
        LocationPayload,
        StickerPayload,
        FlexPayload,
        TemplatePayload,
    ],
    Field(discriminator="type"),
]

payload_adapter: TypeAdapter[MessagePayload] = TypeAdapter(MessagePayload)


def parse_payload(data: dict[str, Any]) -> MessagePayload:
    return payload_adapter.validate_python(data)


def build_preview(payload: BasePayload, *, sender_name: str | None = None, limit: int = 100) -> str:
    """Conversation list summary, prefixed with the speaker in group chats."""

    text = payload.preview()
    if sender_name:
        text = f"{sender_name}: {text}"
    return text[:limit]
