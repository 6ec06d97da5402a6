# Overview: Outbound email interface and the logging default used in development.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str


class Mailer(Protocol):
    def send(
        self,
        to_address: str,
        subject: str,
        text_body: str,
        *,
        html_body: Optional[str] = None,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> None:
        ...


class LogMailer:
    """Development mailer that logs messages instead of sending them."""

    def __init__(self, *, from_address: str) -> None:
        self.from_address = from_address

    def send(
        self,
        to_address: str,
        subject: str,
        text_body: str,
        *,
        html_body: Optional[str] = None,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> None:
        logger.info(
            "Dev email dispatch to=%s from=%s subject=%r attachments=%s",
            to_address,
            self.from_address,
            subject,
            [a.filename for a in attachments or ()],
        )
