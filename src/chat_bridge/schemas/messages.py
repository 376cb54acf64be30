"""Message payload schemas for publish and deliver calls.

Wire names are camelCase; the schemas convert to and from the
:class:`~chat_bridge.models.Envelope` value object used internally.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chat_bridge.models import Attachment, Endpoint, Envelope
from chat_bridge.schemas.common import Identifier

_WIRE_CONFIG = ConfigDict(
    populate_by_name=True,
    coerce_numbers_to_str=True,
)


class AttachmentIn(BaseModel):
    """A file reference attached to a message."""

    url: str = Field(..., min_length=1)
    name: str | None = None


class _MessageMetadata(BaseModel):
    """Optional presentation fields carried untouched through the relay."""

    model_config = _WIRE_CONFIG

    message_id: str | None = Field(None, alias="messageId", max_length=128)
    sent_at: int | None = Field(None, alias="sentAt", ge=0, description="Epoch milliseconds")
    author_name: str | None = Field(None, alias="authorName")
    author_avatar: str | None = Field(None, alias="authorAvatar")
    origin_name: str | None = Field(None, alias="originName")
    reply_to: str | None = Field(None, alias="replyTo")
    reply_content: str | None = Field(None, alias="replyContent")
    attachments: list[AttachmentIn] = Field(default_factory=list)

    def _metadata_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "author_name": self.author_name,
            "author_avatar": self.author_avatar,
            "origin_name": self.origin_name,
            "reply_to": self.reply_to,
            "reply_content": self.reply_content,
            "attachments": tuple(
                Attachment(url=item.url, name=item.name) for item in self.attachments
            ),
        }
        if self.message_id:
            kwargs["message_id"] = self.message_id
        if self.sent_at is not None:
            kwargs["timestamp"] = self.sent_at
        return kwargs


class PublishRequest(_MessageMetadata):
    """Schema for a message forwarded to the hub by a relay client."""

    installation_id: Identifier = Field(..., alias="installationId")
    channel_id: Identifier = Field(..., alias="channelId")
    author_id: Identifier = Field(..., alias="authorId")
    content: str = Field(..., max_length=4000)

    def to_envelope(self) -> Envelope:
        """Build the immutable envelope for this publish call."""
        return Envelope(
            source=Endpoint(installation_id=self.installation_id, channel_id=self.channel_id),
            author_id=self.author_id,
            content=self.content,
            **self._metadata_kwargs(),
        )

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> PublishRequest:
        return cls(
            installation_id=envelope.source.installation_id,
            channel_id=envelope.source.channel_id,
            author_id=envelope.author_id,
            content=envelope.content,
            **_envelope_metadata(envelope),
        )


class PublishResponse(BaseModel):
    """Acknowledgement returned once a fan-out was dispatched."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    message_id: str | None = Field(None, alias="messageId")
    targets: int = 0


class DeliverRequest(_MessageMetadata):
    """Schema for a relayed message pushed from the hub to a relay client."""

    target_installation_id: Identifier = Field(..., alias="targetInstallationId")
    target_channel_id: Identifier = Field(..., alias="targetChannelId")
    author_id: Identifier = Field(..., alias="authorId")
    content: str = Field(..., max_length=4000)
    source_installation_id: Identifier = Field(..., alias="sourceInstallationId")
    source_channel_id: Identifier | None = Field(None, alias="sourceChannelId")

    @property
    def target(self) -> Endpoint:
        return Endpoint(
            installation_id=self.target_installation_id,
            channel_id=self.target_channel_id,
        )

    def to_envelope(self) -> Envelope:
        """Rebuild the envelope that the hub fanned out."""
        return Envelope(
            source=Endpoint(
                installation_id=self.source_installation_id,
                channel_id=self.source_channel_id or "",
            ),
            author_id=self.author_id,
            content=self.content,
            **self._metadata_kwargs(),
        )

    @classmethod
    def from_envelope(cls, envelope: Envelope, target: Endpoint) -> DeliverRequest:
        return cls(
            target_installation_id=target.installation_id,
            target_channel_id=target.channel_id,
            author_id=envelope.author_id,
            content=envelope.content,
            source_installation_id=envelope.source.installation_id,
            source_channel_id=envelope.source.channel_id,
            **_envelope_metadata(envelope),
        )

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON body sent over HTTP."""
        return self.model_dump(by_alias=True, exclude_none=True)


class DeliverResponse(BaseModel):
    """Acknowledgement returned by a relay client after posting locally."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    message_id: str | None = Field(None, alias="messageId")


def _envelope_metadata(envelope: Envelope) -> dict[str, Any]:
    return {
        "message_id": envelope.message_id,
        "sent_at": envelope.timestamp,
        "author_name": envelope.author_name,
        "author_avatar": envelope.author_avatar,
        "origin_name": envelope.origin_name,
        "reply_to": envelope.reply_to,
        "reply_content": envelope.reply_content,
        "attachments": [
            AttachmentIn(url=item.url, name=item.name) for item in envelope.attachments
        ],
    }
