"""
Storage Module
Persists EmailRecords to files, a SQL database, an HTTP webhook, or a
fan-out of several of them

PATTERN RECOGNITION: Every backend implements EmailStorage.save(). The
CompositeStorage is itself an EmailStorage, so callers never know whether
they talk to one target or many.
"""

import base64
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .email_data import Attachment, EmailRecord, RawContent
from .email_parser import encode_raw
from ..utils.sanitization import sanitize_for_logging
from ..utils.security_validators import sanitize_filename

INBOX_PAGE_SIZE = 5

Base = declarative_base()


class StorageError(Exception):
    """Raised when a record could not be persisted"""

    def __init__(self, message: str, failures: Optional[List[Exception]] = None):
        super().__init__(message)
        self.failures = failures or []


def generate_uuid7() -> str:
    """
    Time-ordered UUID (version 7): 48-bit millisecond timestamp, then random bits
    """
    timestamp_ms = time.time_ns() // 1_000_000
    value = (timestamp_ms & 0xFFFF_FFFF_FFFF) << 80
    value |= int.from_bytes(os.urandom(10), "big")
    value = (value & ~(0xF << 76)) | (0x7 << 76)
    value = (value & ~(0x3 << 62)) | (0x2 << 62)
    return str(uuid.UUID(int=value))


class EmailRow(Base):
    """One stored message"""
    __tablename__ = "email"

    id = Column(String(36), primary_key=True)
    sender = Column("from", Text, nullable=False, index=True)
    recipient = Column("to", Text, nullable=False, index=True)
    subject = Column(Text)
    date = Column(Text)
    body = Column(Text)
    html_body = Column(Text)
    raw_content = Column(Text)
    raw_encoding = Column(String(16), nullable=False, default="utf-8", server_default="utf-8")
    created_at = Column(DateTime, server_default=func.now(), index=True)

    attachments = relationship(
        "AttachmentRow",
        back_populates="email",
        cascade="all, delete-orphan",
        order_by="AttachmentRow.id",
    )

    def __repr__(self):
        return f"<EmailRow(id={self.id}, to={self.recipient})>"


class AttachmentRow(Base):
    """One attachment of a stored message"""
    __tablename__ = "attachment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email_id = Column(String(36), ForeignKey("email.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(Text)
    content_type = Column(Text)
    content_id = Column(Text)
    data = Column(LargeBinary)

    email = relationship("EmailRow", back_populates="attachments")


@dataclass
class PendingEmail:
    """A stored message whose derived fields still need to be computed"""
    email_id: str
    raw_content: str
    sender: str = ""
    recipient: str = ""
    raw_encoding: str = "utf-8"

    def raw_message(self) -> RawContent:
        """The stored message as parser input, byte for byte as received"""
        return encode_raw(self.raw_content, self.raw_encoding)


def record_to_dict(record: EmailRecord, include_data: bool = True) -> Dict[str, Any]:
    """JSON-friendly view of a record; attachment data is base64-encoded"""
    attachments = []
    for attachment in record.attachments:
        item = {
            "filename": attachment.filename,
            "content_type": attachment.content_type,
            "content_id": attachment.content_id,
            "size": attachment.size,
        }
        if include_data:
            item["data"] = base64.b64encode(attachment.data).decode("ascii")
        attachments.append(item)

    return {
        "id": record.email_id,
        "from": record.sender,
        "to": record.recipient,
        "subject": record.subject,
        "date": record.date,
        "body": record.body,
        "html_body": record.html_body,
        "raw_content": record.raw_content,
        "raw_encoding": record.raw_encoding,
        "attachments": attachments,
    }


class EmailStorage(ABC):
    """Interface for anything that can persist an EmailRecord"""

    @abstractmethod
    def save(self, record: EmailRecord) -> str:
        """
        Persist *record*

        Returns:
            Identifier of the stored record (path, UUID, URL)

        Raises:
            StorageError: if the record was not persisted
        """

    def close(self) -> None:
        """Release held resources"""


class FileStorage(EmailStorage):
    """Writes each message to ``<directory>/<time_ns>.txt``"""

    def __init__(self, directory: str = "emails", save_attachments: bool = False):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.save_attachments = save_attachments
        self.logger = logging.getLogger("FileStorage")

    def save(self, record: EmailRecord) -> str:
        stamp = time.time_ns()
        path = self.directory / f"{stamp}.txt"
        envelope = f"From: {record.sender}\nTo: {record.recipient}\n\n"
        content = (
            envelope.encode("utf-8", errors="replace")
            + record.raw_content.encode(record.raw_encoding, errors="replace")
        )

        try:
            # Binary mode writes the message bytes as received
            with open(path, "wb") as f:
                f.write(content)

            if self.save_attachments and record.attachments:
                self._write_attachments(self.directory / f"{stamp}_attachments", record.attachments)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

        self.logger.debug("Wrote %s", path)
        return str(path)

    def _write_attachments(self, target: Path, attachments: Iterable[Attachment]) -> None:
        target.mkdir(parents=True, exist_ok=True)
        used = set()
        for index, attachment in enumerate(attachments):
            name = sanitize_filename(attachment.filename)
            if name in used:
                name = f"{index}_{name}"
            used.add(name)
            (target / name).write_bytes(attachment.data)


class DatabaseStorage(EmailStorage):
    """
    SQL storage through SQLAlchemy

    Works against any SQLAlchemy URL; PostgreSQL in production and SQLite
    in tests. Every write runs in its own transaction.
    """

    def __init__(self, url: str, engine=None):
        self.engine = engine if engine is not None else create_engine(url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.logger = logging.getLogger("DatabaseStorage")

    def save(self, record: EmailRecord) -> str:
        email_id = record.email_id or generate_uuid7()
        row = EmailRow(
            id=email_id,
            sender=record.sender,
            recipient=record.recipient,
            subject=record.subject,
            date=record.date,
            body=record.body,
            html_body=record.html_body,
            raw_content=record.raw_content,
            raw_encoding=record.raw_encoding,
        )
        row.attachments = [self._attachment_row(a) for a in record.attachments]

        try:
            with self.Session.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert email: {e}") from e

        self.logger.info(
            f"Email saved: id={email_id}, from={sanitize_for_logging(record.sender)}, "
            f"to={sanitize_for_logging(record.recipient)}, attachments={len(record.attachments)}"
        )
        return email_id

    @staticmethod
    def _attachment_row(attachment: Attachment) -> AttachmentRow:
        return AttachmentRow(
            filename=attachment.filename,
            content_type=attachment.content_type,
            content_id=attachment.content_id,
            data=attachment.data,
        )

    def get_inbox(self, address: str, page: int = 1) -> List[Dict[str, Any]]:
        """Summaries for *address*, newest first, INBOX_PAGE_SIZE per page (1-based)"""
        page = max(page, 1)
        statement = (
            select(EmailRow)
            .where(EmailRow.recipient == address)
            .order_by(EmailRow.created_at.desc(), EmailRow.id.desc())
            .limit(INBOX_PAGE_SIZE)
            .offset((page - 1) * INBOX_PAGE_SIZE)
        )
        with self.Session() as session:
            return [
                {
                    "id": row.id,
                    "from": row.sender,
                    "to": row.recipient,
                    "subject": row.subject or "",
                    "date": row.date or "",
                    "created_at": row.created_at,
                }
                for row in session.scalars(statement)
            ]

    def get_email(self, email_id: str) -> Optional[Dict[str, Any]]:
        """Full detail of one message with attachment metadata, or None"""
        with self.Session() as session:
            row = session.get(EmailRow, email_id)
            if row is None:
                return None
            return {
                "id": row.id,
                "from": row.sender,
                "to": row.recipient,
                "subject": row.subject or "",
                "date": row.date or "",
                "body": row.body or "",
                "html_body": row.html_body or "",
                "raw_content": row.raw_content or "",
                "raw_encoding": row.raw_encoding or "utf-8",
                "created_at": row.created_at,
                "attachments": [
                    {
                        "filename": a.filename,
                        "content_type": a.content_type,
                        "size": len(a.data or b""),
                    }
                    for a in row.attachments
                ],
            }

    def _pending_filter(self):
        return (
            EmailRow.raw_content.is_not(None),
            EmailRow.raw_content != "",
            or_(EmailRow.body.is_(None), EmailRow.body == ""),
            or_(EmailRow.html_body.is_(None), EmailRow.html_body == ""),
        )

    def find_pending(self, limit: Optional[int] = None) -> List[PendingEmail]:
        """Stored messages with raw content but no derived bodies yet"""
        statement = select(EmailRow).where(*self._pending_filter()).order_by(EmailRow.id)
        if limit:
            statement = statement.limit(limit)
        with self.Session() as session:
            return [
                PendingEmail(
                    row.id, row.raw_content, row.sender, row.recipient, row.raw_encoding or "utf-8"
                )
                for row in session.scalars(statement)
            ]

    def is_pending(self, email_id: str) -> bool:
        statement = select(EmailRow.id).where(EmailRow.id == email_id, *self._pending_filter())
        with self.Session() as session:
            return session.scalar(statement) is not None

    def count_pending(self) -> int:
        statement = select(func.count()).select_from(EmailRow).where(*self._pending_filter())
        with self.Session() as session:
            return session.scalar(statement) or 0

    def update_derived(self, email_id: str, body: str, html_body: str) -> bool:
        """Write back derived bodies; False when the row does not exist"""
        return self.write_derived(email_id, body, html_body) is not None

    def write_derived(
        self,
        email_id: str,
        body: str,
        html_body: str,
        attachments: Iterable[Attachment] = ()
    ) -> Optional[int]:
        """
        Write derived bodies and any missing attachment rows in one transaction

        Attachments are only inserted when the message has none yet. Either
        everything is committed or nothing is, so a failed write leaves the
        row pending for the next run.

        Returns:
            Number of attachment rows added, or None when the row does not exist
        """
        try:
            with self.Session.begin() as session:
                row = session.get(EmailRow, email_id)
                if row is None:
                    return None
                row.body = body
                row.html_body = html_body

                added = 0
                attachments = list(attachments)
                if attachments and not self._has_attachment_rows(session, email_id):
                    for attachment in attachments:
                        new_row = self._attachment_row(attachment)
                        new_row.email_id = email_id
                        session.add(new_row)
                        added += 1
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update email {email_id}: {e}") from e
        return added

    @staticmethod
    def _has_attachment_rows(session, email_id: str) -> bool:
        statement = select(AttachmentRow.id).where(AttachmentRow.email_id == email_id).limit(1)
        return session.scalar(statement) is not None

    def has_attachments(self, email_id: str) -> bool:
        with self.Session() as session:
            return self._has_attachment_rows(session, email_id)

    def close(self) -> None:
        self.engine.dispose()


class WebhookStorage(EmailStorage):
    """POSTs every record as JSON to an HTTP endpoint"""

    def __init__(self, url: str, timeout: int = 10, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.http = session or requests
        self.logger = logging.getLogger("WebhookStorage")

    def save(self, record: EmailRecord) -> str:
        try:
            response = self.http.post(
                self.url,
                json=record_to_dict(record),
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise StorageError(f"Webhook delivery failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise StorageError(f"Webhook returned HTTP {response.status_code}")

        self.logger.info("Webhook delivery succeeded")
        return self.url


class CompositeStorage(EmailStorage):
    """
    Fans a record out to several backends

    Every backend is attempted even after a failure. save() succeeds if at
    least one backend succeeded and returns that backend's identifier; it
    raises StorageError carrying all failures only when none succeeded.
    """

    def __init__(self, *storages: EmailStorage):
        if not storages:
            raise ValueError("CompositeStorage needs at least one backend")
        self.storages = list(storages)
        self.logger = logging.getLogger("CompositeStorage")

    def save(self, record: EmailRecord) -> str:
        results: List[str] = []
        failures: List[Exception] = []

        for storage in self.storages:
            try:
                results.append(storage.save(record))
            except Exception as e:
                self.logger.error(f"Error saving to {type(storage).__name__}: {e}")
                failures.append(e)

        if results:
            if failures:
                self.logger.warning(
                    f"Saved to {len(results)} of {len(self.storages)} storage backends"
                )
            return results[0]

        raise StorageError("All storage backends failed", failures)

    def find(self, storage_type: type) -> Optional[EmailStorage]:
        """First backend of *storage_type*, if any"""
        for storage in self.storages:
            if isinstance(storage, storage_type):
                return storage
        return None

    def close(self) -> None:
        first_error = None
        for storage in self.storages:
            try:
                storage.close()
            except Exception as e:
                self.logger.error(f"Error closing {type(storage).__name__}: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
