"""RFC 822 parsing and text clean-up for incoming mail."""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from html.parser import HTMLParser

from mail_assistant.mail.types import IncomingMessage

logger = logging.getLogger(__name__)

#: Subject prefixes that mark a reply. Stripped before composing our own "Re:".
REPLY_PREFIX_RE = re.compile(r"^\s*(?:(?:re|回复)\s*[:：]\s*)+", re.IGNORECASE)

_SIGNATURE_RE = re.compile(r"Sent from my (?:iPhone|Android)", re.IGNORECASE)


class MessageParseError(Exception):
    """Raised when raw bytes cannot be turned into an IncomingMessage."""


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Minimal HTMLParser subclass that collects visible text nodes."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text and not self._skip:
            self._parts.append(text)

    def get_text(self) -> str:
        return "\n".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing useful,
    the original string is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        result = stripper.get_text()
        return result if result else text
    except Exception:  # noqa: BLE001
        return text


# ── Address helpers ─────────────────────────────────────────────────────────────


def extract_address(value: str) -> str:
    """Return the bare, lower-cased address from a header like 'Alice <a@x.com>'."""
    if not value:
        return ""
    _name, addr = parseaddr(value)
    if addr and "@" in addr:
        return addr.strip().lower()
    match = re.search(r"[^\s<>]+@[^\s<>]+", value)
    return match.group(0).lower() if match else value.strip().lower()


def display_name(value: str) -> str:
    """Return the display-name part of an address header, or the local part."""
    name, addr = parseaddr(value)
    if name:
        return name
    return addr.split("@", 1)[0] if addr else value


def strip_reply_prefixes(subject: str) -> str:
    return REPLY_PREFIX_RE.sub("", subject or "").strip()


def clean_reply_body(text: str) -> str:
    """Drop quoted history and mobile signatures from a reply body.

    Everything from the first quote marker onwards (``>`` lines, "On ... wrote:",
    "Original Message") is discarded; blank lines are removed.
    """
    kept: list[str] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if (
            stripped.startswith(">")
            or (stripped.startswith("On ") and "wrote:" in stripped)
            or "Original Message" in stripped
        ):
            break
        if stripped:
            kept.append(stripped)
    cleaned = "\n".join(kept).strip()
    return _SIGNATURE_RE.sub("", cleaned).strip()


# ── Message parsing ─────────────────────────────────────────────────────────────


def _body_text(msg: EmailMessage) -> str:
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError) as exc:
        logger.warning("Could not decode body part: %s", exc)
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    if part.get_content_subtype() == "html":
        return strip_html(content)
    return content


def _received_at(msg: EmailMessage) -> datetime:
    raw = msg.get("Date")
    if raw:
        try:
            return parsedate_to_datetime(str(raw))
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header %r", raw)
    return datetime.now().astimezone()


def _synthetic_id(uid: str | None, msg: EmailMessage) -> str:
    seed = f"{uid}|{msg.get('Date', '')}|{msg.get('From', '')}|{msg.get('Subject', '')}"
    return f"<generated-{hashlib.sha1(seed.encode()).hexdigest()[:16]}@local>"


def parse_message(raw: bytes, uid: str | None = None) -> IncomingMessage:
    """Parse raw RFC 822 bytes into an unclassified IncomingMessage.

    Headers are decoded lazily under ``policy.default``, so any failure while
    reading them is reported as a parse error for this message only.

    Raises:
        MessageParseError: if the bytes are empty, malformed or have no sender.
    """
    if not raw:
        raise MessageParseError(f"Empty message body for uid {uid!r}")
    try:
        msg = message_from_bytes(raw, policy=policy.default)
        return _extract(msg, uid)
    except MessageParseError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise MessageParseError(f"Malformed message uid {uid!r}: {exc}") from exc


def _extract(msg: EmailMessage, uid: str | None) -> IncomingMessage:
    sender = str(msg.get("From", "")).strip()
    sender_address = extract_address(sender)
    if not sender_address:
        raise MessageParseError(f"Message uid {uid!r} has no From address")

    subject = str(msg.get("Subject", "")).strip()
    recipients = [
        addr.lower()
        for _name, addr in getaddresses([str(v) for v in msg.get_all("To", [])])
        if addr
    ]
    in_reply_to = str(msg.get("In-Reply-To", "")).strip() or None
    references = str(msg.get("References", "")).split()
    is_reply = bool(in_reply_to or references or REPLY_PREFIX_RE.match(subject))

    message_id = str(msg.get("Message-ID", "")).strip() or _synthetic_id(uid, msg)
    body = _body_text(msg)
    body = clean_reply_body(body) if is_reply else body.strip()

    return IncomingMessage(
        message_id=message_id,
        uid=uid,
        sender=sender,
        sender_address=sender_address,
        recipients=recipients,
        subject=subject,
        body=body,
        received_at=_received_at(msg),
        in_reply_to=in_reply_to,
        references=references,
        is_reply=is_reply,
    )
