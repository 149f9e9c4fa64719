from __future__ import annotations

from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import List, Optional

from imap_to_filesystem.models import Attachment, ParsedMessage


def _sent_date(msg: EmailMessage) -> Optional[datetime]:
    raw = msg.get("Date")
    if not raw:
        return None
    try:
        return parsedate_to_datetime(str(raw))
    except (TypeError, ValueError, IndexError):
        return None


def _is_attachment(part: EmailMessage) -> bool:
    if part.is_multipart():
        return False
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    if part.get_filename():
        return True
    # Inline binary parts (images, pdfs without disposition) count as well.
    return disposition is None and part.get_content_maintype() not in ("text", "multipart", "message")


def _is_attached_message(part: EmailMessage) -> bool:
    # A forwarded mail (.eml) is saved whole, not searched for its own attachments.
    if part.get_content_type() != "message/rfc822":
        return False
    return part.get_content_disposition() == "attachment" or bool(part.get_filename())


def _collect(part: EmailMessage, attachments: List[Attachment]) -> None:
    if _is_attached_message(part):
        attachments.append(
            Attachment(
                filename=part.get_filename() or None,
                content=part.get_payload(0).as_bytes(),
                content_type=part.get_content_type(),
            )
        )
        return
    if part.is_multipart():
        for sub in part.get_payload():
            _collect(sub, attachments)
        return
    if _is_attachment(part):
        attachments.append(
            Attachment(
                filename=part.get_filename() or None,
                content=part.get_payload(decode=True) or b"",
                content_type=part.get_content_type(),
            )
        )


def extract_attachments(msg: EmailMessage) -> List[Attachment]:
    """Depth-first list of attachment parts, in message order."""
    attachments: List[Attachment] = []
    _collect(msg, attachments)
    return attachments


def parse_message(raw: bytes) -> ParsedMessage:
    """
    Parse raw RFC 822 bytes into the parts the processor needs.
    Raises ValueError/TypeError from the email package on unusable input.
    """
    if not isinstance(raw, (bytes, bytearray)):
        raise TypeError(f"Expected raw message bytes, got {type(raw).__name__}")
    if not raw.strip():
        raise ValueError("Empty message")

    msg = BytesParser(policy=policy.default).parsebytes(bytes(raw))
    return ParsedMessage(
        sent_date=_sent_date(msg),
        subject=str(msg.get("Subject", "") or ""),
        attachments=extract_attachments(msg),
    )
