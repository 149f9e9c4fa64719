from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from imap_to_filesystem.actions.executor import ActionExecutor, default_executor
from imap_to_filesystem.errors import ParseError, WriteFailure
from imap_to_filesystem.imap.client import MailboxHandle
from imap_to_filesystem.models import Attachment, AttachmentCandidate, ParsedMessage, ProcessOutcome
from imap_to_filesystem.parsing.parser import parse_message
from imap_to_filesystem.pipeline.naming import compute_filename
from imap_to_filesystem.pipeline.policy import actions_after_save
from imap_to_filesystem.rules.core import FilterRule


class MessageProcessor:
    """
    Saves the attachment of one matched message and marks the message handled.

    Holds no state between messages. At most one attachment is saved per
    message: the first one that passes the filename filter and does not
    collide with an existing file. After the write the message gets the
    processed keyword and, when the rule names one, is moved to the done
    mailbox. Nothing is rolled back if a later step fails.
    """

    def __init__(
        self,
        *,
        executor: Optional[ActionExecutor] = None,
        parser: Callable[[bytes], ParsedMessage] = parse_message,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger("imap_to_filesystem.processor")
        self._executor = executor or default_executor(self._logger)
        self._parser = parser

    def process(self, raw_message: bytes, rule: FilterRule, uid: int, handle: MailboxHandle) -> ProcessOutcome:
        outcome = ProcessOutcome(uid=uid, filter_name=rule.name)
        self._logger.debug("%s: Processing message %s", rule.name, uid)

        try:
            parsed = self._parser(raw_message)
        except (ValueError, TypeError, LookupError) as exc:
            raise ParseError(rule.name, uid, f"{type(exc).__name__}: {exc}") from exc

        self._logger.debug(
            "%s: Message %s (%r) has %d attachments", rule.name, uid, parsed.subject, len(parsed.attachments)
        )
        if not parsed.attachments:
            # Left unmarked on purpose; the next sweep looks at it again.
            self._logger.info("%s: No attachments found in message %s", rule.name, uid)
            return outcome

        for attachment in parsed.attachments:
            if not self._wanted(rule, attachment):
                self._logger.debug(
                    "%s: Skipping attachment: %s (%s)", rule.name, attachment.filename, attachment.content_type
                )
                outcome.skipped.append(attachment.filename or "")
                continue

            candidate = self._candidate(rule, parsed, attachment)
            if not self._write(rule, uid, candidate):
                self._logger.warning(
                    "%s: File already exists: %s (message %s)", rule.name, candidate.output_path, uid
                )
                outcome.collisions.append(candidate.output_path)
                continue

            outcome.saved_path = candidate.output_path
            self._logger.info(
                "%s: Saved %s as %s from message %s",
                rule.name,
                candidate.original_name,
                candidate.output_path,
                uid,
            )
            self._executor.run(handle, actions_after_save(rule, uid, candidate.output_name))
            break

        return outcome

    def _wanted(self, rule: FilterRule, attachment: Attachment) -> bool:
        if not rule.filename_filter:
            return True
        return bool(attachment.filename) and rule.filename_filter in attachment.filename

    def _candidate(self, rule: FilterRule, parsed: ParsedMessage, attachment: Attachment) -> AttachmentCandidate:
        name = _base_name(attachment.filename)
        output_name = compute_filename(rule.rename_template, parsed.sent_date, name)
        return AttachmentCandidate(
            original_name=attachment.filename,
            content=attachment.content,
            output_name=output_name,
            output_path=Path(rule.destination_path) / output_name,
        )

    def _write(self, rule: FilterRule, uid: int, candidate: AttachmentCandidate) -> bool:
        """Write the file; False means something was already there."""
        path = candidate.output_path
        root = Path(rule.destination_path).resolve()
        target = path.resolve()
        if target == root or root not in target.parents:
            raise WriteFailure(rule.name, uid, f"{path}: outside of {root}")
        try:
            if path.exists():
                return False
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteFailure(rule.name, uid, f"{path}: {exc}") from exc
        try:
            # "x" refuses to clobber a file created since the exists() check.
            with path.open("xb") as fh:
                fh.write(candidate.content)
        except FileExistsError:
            return False
        except OSError as exc:
            raise WriteFailure(rule.name, uid, f"{path}: {exc}") from exc
        return True


def _base_name(filename: Optional[str]) -> Optional[str]:
    """Last path component of a sender-supplied name, for either separator."""
    if not filename:
        return None
    name = PurePosixPath(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return None
    return name
