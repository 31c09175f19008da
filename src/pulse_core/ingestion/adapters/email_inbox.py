"""Company inbox adapter (IMAP).

Counts one day's received and sent mail, splits it into support, sales
and other, and measures how fast support mail was answered. Rows are
company-wide, so ``app_id`` is the "" sentinel.
"""
import asyncio
import email
import imaplib
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from email import policy
from email.utils import parsedate_to_datetime
from typing import Optional

from ...exceptions import PulseError
from ..base import RunStats, SourceAdapter
from ..context import IngestionContext


logger = logging.getLogger(__name__)

INBOX_FOLDER = "INBOX"

EMAIL_TYPES = ("support", "sales", "other")

SUPPORT_SUBJECT_TERMS = ("help", "issue", "problem", "bug", "error", "not working")
SALES_SUBJECT_TERMS = ("pricing", "enterprise", "quote", "demo")

# Replies slower than a week are not counted as responses.
MAX_RESPONSE_MINUTES = 7 * 24 * 60

_IMAP_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class InboxMessage:
    """Header fields used for counting and reply matching."""

    message_id: str
    subject: str
    recipients: str
    sent_at: Optional[datetime]
    in_reply_to: str = ""
    references: tuple[str, ...] = ()


def _imap_date(day: date) -> str:
    return f"{day.day:02d}-{_IMAP_MONTHS[day.month - 1]}-{day.year}"


def _quote_folder(folder: str) -> str:
    return '"' + folder.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _header(message, name: str) -> str:
    value = message.get(name)
    return str(value).strip() if value is not None else ""


def parse_message(raw: bytes) -> InboxMessage:
    """Parse raw message headers into an ``InboxMessage``."""
    message = email.message_from_bytes(raw, policy=policy.default)

    sent_at = None
    date_header = _header(message, "Date")
    if date_header:
        try:
            sent_at = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header: %s", date_header)
    if sent_at is not None and sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)

    return InboxMessage(
        message_id=_header(message, "Message-ID"),
        subject=_header(message, "Subject"),
        recipients=", ".join(
            part for part in (_header(message, "To"), _header(message, "Cc")) if part
        ),
        sent_at=sent_at,
        in_reply_to=_header(message, "In-Reply-To"),
        references=tuple(_header(message, "References").split()),
    )


def categorize(message: InboxMessage) -> str:
    """Classify a message as ``support``, ``sales`` or ``other``."""
    subject = message.subject.lower()
    recipients = message.recipients.lower()

    if "support@" in recipients or any(t in subject for t in SUPPORT_SUBJECT_TERMS):
        return "support"
    if "sales@" in recipients or any(t in subject for t in SALES_SUBJECT_TERMS):
        return "sales"
    return "other"


def average_response_minutes(
    received: list[InboxMessage], sent: list[InboxMessage]
) -> Optional[float]:
    """Mean minutes between a received message and the first reply to it.

    Returns:
        Rounded average, or None when nothing was answered
    """
    response_times = []
    for incoming in received:
        if not incoming.message_id or incoming.sent_at is None:
            continue

        reply = next(
            (
                outgoing
                for outgoing in sent
                if outgoing.in_reply_to == incoming.message_id
                or incoming.message_id in outgoing.references
            ),
            None,
        )
        if reply is None or reply.sent_at is None:
            continue

        minutes = (reply.sent_at - incoming.sent_at).total_seconds() / 60
        if 0 < minutes < MAX_RESPONSE_MINUTES:
            response_times.append(minutes)

    if not response_times:
        return None
    return round(sum(response_times) / len(response_times))


class EmailInboxAdapter(SourceAdapter):
    """Support/sales/other mail counts from an IMAP mailbox."""

    name = "email"
    not_configured_message = "IMAP inbox not configured"

    def is_configured(self) -> bool:
        return bool(
            self.settings.email_imap_host
            and self.settings.email_imap_user
            and self.settings.email_imap_password
        )

    def _fetch_folder_sync(self, folder: str, day: date) -> list[bytes]:
        """Raw headers of messages around ``day`` in one folder.

        The IMAP search is widened by a day on each side because servers
        compare internal dates in their own timezone.
        """
        since = _imap_date(day - timedelta(days=1))
        before = _imap_date(day + timedelta(days=2))

        with imaplib.IMAP4_SSL(
            self.settings.email_imap_host, self.settings.email_imap_port
        ) as client:
            client.login(
                self.settings.email_imap_user, self.settings.email_imap_password
            )

            status, _ = client.select(_quote_folder(folder), readonly=True)
            if status != "OK":
                raise PulseError(f"IMAP folder {folder} not available")

            status, data = client.search(None, "SINCE", since, "BEFORE", before)
            if status != "OK":
                raise PulseError(f"IMAP search failed in {folder}")

            message_ids = data[0].split() if data and data[0] else []
            if not message_ids:
                return []

            status, fetched = client.fetch(
                b",".join(message_ids), "(BODY.PEEK[HEADER])"
            )
            if status != "OK":
                raise PulseError(f"IMAP fetch failed in {folder}")

        return [
            part[1] for part in fetched if isinstance(part, tuple) and len(part) > 1
        ]

    async def fetch_messages(
        self, folder: str, context: IngestionContext
    ) -> list[InboxMessage]:
        """Messages in ``folder`` dated on the metric day (settings timezone)."""
        raw_messages = await asyncio.to_thread(
            self._fetch_folder_sync, folder, context.date
        )

        start = datetime.combine(context.date, time.min, tzinfo=self.settings.tzinfo)
        end = start + timedelta(days=1)

        messages = [parse_message(raw) for raw in raw_messages]
        return [
            message
            for message in messages
            if message.sent_at is not None and start <= message.sent_at < end
        ]

    async def fetch_sent(self, context: IngestionContext) -> list[InboxMessage]:
        """Sent mail from the first sent folder the server has."""
        for folder in self.settings.email_sent_folders:
            try:
                return await self.fetch_messages(folder, context)
            except (PulseError, imaplib.IMAP4.error) as exc:
                logger.debug("Sent folder %s unavailable: %s", folder, exc)

        folders = ", ".join(self.settings.email_sent_folders)
        logger.warning("Could not fetch sent mail from %s", folders)
        return []

    async def ingest(self, context: IngestionContext, stats: RunStats) -> None:
        received = await self.fetch_messages(INBOX_FOLDER, context)
        sent = await self.fetch_sent(context)

        received_by_type = {email_type: [] for email_type in EMAIL_TYPES}
        for message in received:
            received_by_type[categorize(message)].append(message)

        sent_counts = dict.fromkeys(EMAIL_TYPES, 0)
        for message in sent:
            sent_counts[categorize(message)] += 1

        support = received_by_type["support"]
        for email_type in EMAIL_TYPES:
            row = {
                "app_id": None,
                "date": context.date_str,
                "email_type": email_type,
                "received": len(received_by_type[email_type]),
                "emails_sent": sent_counts[email_type],
            }
            if email_type == "support":
                row["tickets_opened"] = len(support)
                row["avg_response_time_minutes"] = average_response_minutes(
                    support, sent
                )
                row["raw_data"] = {
                    "total_received": len(received),
                    "total_sent": len(sent),
                }

            self.store.upsert("daily_email_metrics", row)
            stats.records += 1

        logger.info(
            "Inbox %s: %s received, %s sent, %s support",
            context.date_str,
            len(received),
            len(sent),
            len(support),
        )
