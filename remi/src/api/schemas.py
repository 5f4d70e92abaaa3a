"""
Remi - Webhook Payload Schemas
===============================
Pydantic models for the parts of a WhatsApp Cloud API webhook that Remi
reads.  Unknown fields are ignored; missing containers default to empty
so status callbacks (which carry no ``messages``) and messages missing
``from`` or ``type`` validate cleanly and are skipped.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TextBody(_Lenient):
    body: str = ""


class InboundMessage(_Lenient):
    sender_id: str = Field("", alias="from")
    id: str | None = None
    type: str = ""
    text: TextBody | None = None


class ChangeValue(_Lenient):
    messages: list[InboundMessage] = []


class Change(_Lenient):
    field: str | None = None
    value: ChangeValue = ChangeValue()


class Entry(_Lenient):
    id: str | None = None
    changes: list[Change] = []


class WebhookPayload(_Lenient):
    object: str | None = None
    entry: list[Entry] = []

    def text_messages(self) -> list[tuple[str, str]]:
        """``(sender_id, text)`` for every plain-text message in the payload."""
        found: list[tuple[str, str]] = []
        for entry in self.entry:
            for change in entry.changes:
                for message in change.value.messages:
                    if message.type == "text" and message.sender_id and message.text is not None:
                        found.append((message.sender_id, message.text.body))
        return found
