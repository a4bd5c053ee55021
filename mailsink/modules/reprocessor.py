"""
Reprocessor Module
Backfills derived fields for stored messages from their raw content

MAINTENANCE WISDOM: raw_content is the source of truth. When parsing or
rendering logic improves, rows stored with empty bodies can be re-derived
without touching the original bytes. Each record is committed on its own,
so a failure halfway through a batch keeps every earlier success.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .content_policy import ContentPolicy
from .email_parser import EmailParsingError
from .html_renderer import render_email_html
from .storage import DatabaseStorage, PendingEmail, StorageError


@dataclass
class ReprocessSummary:
    """Outcome counts of one reprocessing run"""
    total: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    attachments_added: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "attachments_added": self.attachments_added,
        }


# Outcomes of reprocess_one
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"


class Reprocessor:
    """
    Re-runs extraction for stored messages whose bodies are empty

    Idempotent: once bodies (and attachments) are populated a record is no
    longer pending, so running again does nothing.
    """

    def __init__(self, storage: DatabaseStorage, policy: Optional[ContentPolicy] = None):
        self.storage = storage
        self.policy = policy or ContentPolicy()
        self.logger = logging.getLogger("Reprocessor")

    def run(self, limit: Optional[int] = None) -> ReprocessSummary:
        """
        Reprocess every pending record, one at a time

        Args:
            limit: Maximum number of records to look at (None = all)
        """
        summary = ReprocessSummary()
        pending = self.storage.find_pending(limit)
        summary.total = len(pending)

        if not pending:
            self.logger.info("No emails found with empty body. Nothing to do.")
            return summary

        self.logger.info(f"Found {summary.total} email(s) with raw_content but empty body. Processing...")

        for index, item in enumerate(pending, start=1):
            self.logger.info(f"[{index}/{summary.total}] Processing email {item.email_id}")
            try:
                outcome, added = self.reprocess_one(item)
            except StorageError as e:
                self.logger.error(f"  FAIL: {e}")
                outcome, added = FAILED, 0

            summary.attachments_added += added
            if outcome == UPDATED:
                summary.updated += 1
            elif outcome == SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1

        self.logger.info(
            f"Done. Total: {summary.total} | Updated: {summary.updated} | "
            f"Skipped: {summary.skipped} | Failed: {summary.failed}"
        )
        remaining = self.storage.count_pending()
        if remaining:
            self.logger.warning(f"{remaining} email(s) still have empty body after processing")

        return summary

    def reprocess_one(self, item: PendingEmail):
        """
        Derive and write back the bodies of one stored record

        Returns:
            (outcome, attachments_added) where outcome is UPDATED, SKIPPED or FAILED

        Raises:
            StorageError: if writing back failed
        """
        raw_message = item.raw_message()
        if self.policy.is_oversized(raw_message):
            self.logger.info("  Email exceeds size limit; writing size-limit placeholder")
            placeholder = self.policy.size_limit_message
            if not self.storage.update_derived(item.email_id, placeholder, placeholder):
                return FAILED, 0
            return UPDATED, 0

        try:
            parsed = self.policy.parser.parse(raw_message)
        except EmailParsingError as e:
            self.logger.warning(f"  SKIP: Failed to parse raw_content: {e}")
            return SKIPPED, 0

        html_body = render_email_html(parsed)
        added = self.storage.write_derived(
            item.email_id,
            parsed.body_text,
            html_body,
            self.policy.redact_attachments(parsed.attachments),
        )
        if added is None:
            self.logger.warning(f"  WARN: No rows affected for email {item.email_id}")
            return FAILED, 0

        self.logger.info(f"  OK: Updated body ({len(html_body)} chars), attachments added: {added}")
        return UPDATED, added

    def get_email(self, email_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a stored message, deriving its bodies first if they are empty

        Used by readers so that rows stored before a parser fix render
        correctly on first access.
        """
        detail = self.storage.get_email(email_id)
        if detail is None:
            return None

        if self.storage.is_pending(email_id):
            pending = PendingEmail(
                email_id, detail["raw_content"], detail["from"], detail["to"], detail["raw_encoding"]
            )
            try:
                outcome, _ = self.reprocess_one(pending)
            except StorageError as e:
                self.logger.error(f"Failed to reprocess email {email_id}: {e}")
                outcome = FAILED
            if outcome == UPDATED:
                detail = self.storage.get_email(email_id)

        return detail
