"""
Message Session Module
Accepts one message at a time from the transport and hands it to storage

The transport layer (an SMTP server library) owns the wire protocol. It
calls mail(), rcpt() and data() in that order once it has the complete
message; this class only turns those calls into a stored record.

SECURITY STORY: Nothing in an accepted message can make acceptance fail.
Oversized or unparseable content is stored with a placeholder body and the
raw bytes kept for later reprocessing. Only a storage failure propagates.
"""

import logging
import time
from typing import Optional

from .content_policy import ContentPolicy
from .email_data import STATUS_PARSED, RawContent
from .storage import EmailStorage, StorageError
from ..utils.metrics import Metrics
from ..utils.sanitization import sanitize_for_logging


class MessageSession:
    """Envelope state for one client connection"""

    def __init__(
        self,
        storage: EmailStorage,
        policy: Optional[ContentPolicy] = None,
        metrics: Optional[Metrics] = None
    ):
        self.storage = storage
        self.policy = policy or ContentPolicy()
        self.metrics = metrics
        self.logger = logging.getLogger("MessageSession")
        self.sender = ""
        self.recipient = ""

    def mail(self, sender: str) -> None:
        """Start a new transaction with envelope sender *sender*"""
        self.sender = sender
        self.recipient = ""

    def rcpt(self, recipient: str) -> None:
        """Set the envelope recipient; with several RCPT commands the last one wins"""
        self.recipient = recipient

    def reset(self) -> None:
        self.sender = ""
        self.recipient = ""

    def data(self, raw_content: RawContent) -> str:
        """
        Store the complete message received after DATA

        Args:
            raw_content: The message exactly as received

        Returns:
            Identifier returned by the storage backend

        Raises:
            StorageError: if no storage target accepted the record
        """
        started = time.perf_counter()
        record = self.policy.build_record(self.sender, self.recipient, raw_content)

        try:
            email_id = self.storage.save(record)
        except StorageError:
            if self.metrics:
                self.metrics.record_error("storage")
            self.logger.error(
                f"Failed to store message from {sanitize_for_logging(self.sender)} "
                f"to {sanitize_for_logging(self.recipient)}"
            )
            raise
        finally:
            self.reset()

        if self.metrics:
            self.metrics.record_message_accepted()
            if record.status != STATUS_PARSED:
                self.metrics.record_outcome(record.status)
            self.metrics.record_outcome("redacted_attachment", record.redacted_attachments)
            self.metrics.record_processing_time((time.perf_counter() - started) * 1000)

        self.logger.info(
            f"Accepted message {email_id} from {sanitize_for_logging(record.sender)} "
            f"to {sanitize_for_logging(record.recipient)} "
            f"subject={sanitize_for_logging(record.subject, max_length=80)!r}"
        )
        return email_id

    def accept(self, sender: str, recipient: str, raw_content: RawContent) -> str:
        """One-shot mail/rcpt/data for callers that already hold the envelope"""
        self.mail(sender)
        self.rcpt(recipient)
        return self.data(raw_content)
