#!/usr/bin/env python3
"""
Mail Sink
Command-line entry point that wires configuration, policy and storage
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from mailsink.modules.content_policy import ContentPolicy
from mailsink.modules.message_session import MessageSession
from mailsink.modules.reprocessor import Reprocessor
from mailsink.modules.storage import (
    CompositeStorage,
    DatabaseStorage,
    FileStorage,
    StorageError,
    WebhookStorage,
)
from mailsink.utils.config import Config, ConfigurationError
from mailsink.utils.metrics import Metrics
from mailsink.utils.structured_logging import JSONFormatter


class MailSinkApp:
    """Builds the pipeline from configuration and runs one CLI command"""

    def __init__(self, config_file: str = ".env"):
        """
        Initialize application

        Args:
            config_file: Path to configuration file
        """
        self.config = Config(config_file)
        self.config.validate()

        self._setup_logging()
        self.logger = logging.getLogger("MailSink")

        self.policy = ContentPolicy.from_config(self.config.policy)
        self.metrics = Metrics()
        self._storage: Optional[CompositeStorage] = None

    def _setup_logging(self):
        """Setup logging configuration"""
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        log_path = Path(self.config.system.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        level_name = str(self.config.system.log_level).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

        handlers = [
            logging.FileHandler(self.config.system.log_file),
            logging.StreamHandler(sys.stderr)
        ]
        if self.config.system.log_format == "json":
            for handler in handlers:
                handler.setFormatter(JSONFormatter())

        logging.basicConfig(level=level, format=log_format, handlers=handlers)

        if level_name != logging.getLevelName(level):
            logging.getLogger("MailSink").warning(
                "Invalid log level '%s'; defaulting to INFO",
                self.config.system.log_level
            )

    @property
    def storage(self) -> CompositeStorage:
        """Storage composite built lazily so read-only commands never open files"""
        if self._storage is None:
            self._storage = build_storage(self.config)
        return self._storage

    def database(self) -> DatabaseStorage:
        database = self.storage.find(DatabaseStorage)
        if database is None:
            raise ConfigurationError("DATABASE_URL is not set")
        return database

    def ingest(self, raw_content: bytes, sender: str = "", recipient: str = "") -> str:
        session = MessageSession(self.storage, self.policy, self.metrics)
        email_id = session.accept(sender, recipient, raw_content)
        self.logger.info(f"Metrics: {self.metrics.get_summary()}")
        return email_id

    def render(self, raw_content: bytes) -> str:
        return self.policy.build_record("", "", raw_content).html_body

    def reprocess(self, limit: Optional[int] = None):
        if limit is None:
            limit = self.config.system.reprocess_batch_size
        return Reprocessor(self.database(), self.policy).run(limit)

    def inbox(self, address: str, page: int = 1):
        return self.database().get_inbox(address, page)

    def close(self):
        if self._storage is not None:
            self._storage.close()


def build_storage(config: Config) -> CompositeStorage:
    """Create every storage target enabled in *config*"""
    storages = []
    if config.storage.database_url:
        storages.append(DatabaseStorage(config.storage.database_url))
    if config.storage.file_enabled:
        storages.append(FileStorage(config.storage.file_dir, config.storage.file_attachments))
    if config.storage.webhook_enabled:
        storages.append(WebhookStorage(config.storage.webhook_url, config.storage.webhook_timeout))
    return CompositeStorage(*storages)


def _read_input(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    with open(path, "rb") as f:
        return f.read()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailsink",
        description="Parse, render and store raw RFC 5322 messages"
    )
    parser.add_argument("--env-file", default=".env", help="Configuration file (default: .env)")
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Store a raw message")
    ingest.add_argument("file", help="Message file, or - for stdin")
    ingest.add_argument("--sender", default="", help="Envelope sender")
    ingest.add_argument("--recipient", default="", help="Envelope recipient")

    render = commands.add_parser("render", help="Print the stored HTML rendering of a message")
    render.add_argument("file", help="Message file, or - for stdin")
    render.add_argument("-o", "--output", help="Write HTML to this file instead of stdout")

    reprocess = commands.add_parser("reprocess", help="Backfill empty bodies from raw content")
    reprocess.add_argument("--limit", type=int, default=None, help="Maximum records to process")

    inbox = commands.add_parser("inbox", help="List stored messages for an address")
    inbox.add_argument("address")
    inbox.add_argument("--page", type=int, default=1)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    try:
        app = MailSinkApp(args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        if args.command == "ingest":
            print(app.ingest(_read_input(args.file), args.sender, args.recipient))
        elif args.command == "render":
            html_body = app.render(_read_input(args.file))
            if args.output:
                Path(args.output).write_text(html_body, encoding="utf-8")
            else:
                sys.stdout.write(html_body)
        elif args.command == "reprocess":
            summary = app.reprocess(args.limit)
            print(json.dumps(summary.as_dict()))
            if summary.failed:
                return 1
        elif args.command == "inbox":
            print(json.dumps(app.inbox(args.address, args.page), default=str, indent=2))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except (StorageError, OSError) as e:
        app.logger.error(f"Command '{args.command}' failed: {e}")
        return 1
    finally:
        app.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
