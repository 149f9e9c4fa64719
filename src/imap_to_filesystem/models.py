from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class Attachment:
    filename: Optional[str]
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class ParsedMessage:
    sent_date: Optional[datetime]
    subject: str = ""
    attachments: List[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class AttachmentCandidate:
    original_name: Optional[str]
    content: bytes
    output_name: str
    output_path: Path


@dataclass
class ProcessOutcome:
    uid: int
    filter_name: str
    saved_path: Optional[Path] = None
    collisions: List[Path] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def saved_count(self) -> int:
        return 1 if self.saved_path is not None else 0


@dataclass
class SweepReport:
    mailbox: str
    filters_searched: int = 0
    messages_matched: int = 0
    files_saved: int = 0
    failures: int = 0
