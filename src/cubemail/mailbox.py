from __future__ import annotations

import base64
import imaplib
import logging
import re
import ssl
from typing import Iterable, Protocol

LOGGER = logging.getLogger(__name__)

IMAPS_PORT = 993
IMAP_PORT = 143

_UNSEEN_RE = re.compile(rb"\bUNSEEN\s+(\d+)", re.IGNORECASE)


class MailConnectionError(ConnectionError):
    """Raised when dialing, the TLS handshake or login fails."""


class MailAuthError(MailConnectionError):
    """Raised when the server rejects the configured credentials."""


class MailQueryError(RuntimeError):
    """Raised when a mailbox status request fails or is not OK."""


class MailSession(Protocol):
    def unread_count(self, label: str) -> int: ...

    def close(self) -> None: ...


def split_address(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        return addr, IMAP_PORT
    try:
        port = int(port_text)
    except ValueError as exc:
        raise MailConnectionError(f"Invalid port in address '{addr}'") from exc
    return host.strip("[]"), port


def uses_implicit_tls(addr: str) -> bool:
    _, port = split_address(addr)
    return port == IMAPS_PORT


def encode_mailbox_name(label: str) -> str:
    """Encode a mailbox name as IMAP modified UTF-7 (RFC 3501 section 5.1.3)."""
    encoded: list[str] = []
    pending: list[str] = []

    def flush() -> None:
        if not pending:
            return
        raw = "".join(pending).encode("utf-16-be")
        chunk = base64.b64encode(raw).decode("ascii").rstrip("=").replace("/", ",")
        encoded.append(f"&{chunk}-")
        pending.clear()

    for char in label:
        if 0x20 <= ord(char) <= 0x7E:
            flush()
            encoded.append("&-" if char == "&" else char)
        else:
            pending.append(char)
    flush()
    return "".join(encoded)


def quote_mailbox(label: str) -> str:
    escaped = encode_mailbox_name(label).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _record_bytes(record: object) -> bytes:
    if isinstance(record, bytes):
        return record
    if isinstance(record, tuple):
        return b" ".join(part for part in record if isinstance(part, bytes))
    if isinstance(record, str):
        return record.encode("utf-8", "replace")
    return b""


def parse_unseen_counts(data: Iterable[object]) -> list[int]:
    """Extract the UNSEEN value of every STATUS record; others are skipped."""
    counts: list[int] = []
    for record in data:
        # Only the trailing attribute list; the quoted name may contain anything.
        _, _, attributes = _record_bytes(record).rpartition(b"(")
        match = _UNSEEN_RE.search(attributes)
        if match:
            counts.append(int(match.group(1)))
    return counts


class ImapMailbox:
    def __init__(self, client: imaplib.IMAP4) -> None:
        self._client = client

    @classmethod
    def connect(
        cls,
        addr: str,
        username: str,
        password: str,
        *,
        timeout: float | None = None,
    ) -> ImapMailbox:
        host, port = split_address(addr)
        try:
            if port == IMAPS_PORT:
                client: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    host,
                    port,
                    ssl_context=ssl.create_default_context(),
                    timeout=timeout,
                )
            else:
                client = imaplib.IMAP4(host, port, timeout=timeout)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise MailConnectionError(f"Unable to dial '{addr}': {exc}") from exc

        mailbox = cls(client)
        try:
            if port != IMAPS_PORT and "STARTTLS" in client.capabilities:
                LOGGER.debug("Server advertises STARTTLS", extra={"category": "mail"})
                try:
                    client.starttls(ssl_context=ssl.create_default_context())
                except (imaplib.IMAP4.error, OSError) as exc:
                    raise MailConnectionError(f"Unable to start TLS: {exc}") from exc
            LOGGER.debug("Logging in", extra={"category": "mail"})
            try:
                client.login(username, password)
            except imaplib.IMAP4.abort as exc:
                raise MailConnectionError(f"Connection lost during login: {exc}") from exc
            except imaplib.IMAP4.error as exc:
                raise MailAuthError(f"Unable to login: {exc}") from exc
            except OSError as exc:
                raise MailConnectionError(f"Unable to login: {exc}") from exc
        except MailConnectionError:
            mailbox.close()
            raise
        return mailbox

    def unseen_counts(self, label: str) -> list[int]:
        LOGGER.debug("STATUS %s (UNSEEN)", label, extra={"category": "mail"})
        try:
            typ, data = self._client.status(quote_mailbox(label), "(UNSEEN)")
        except (imaplib.IMAP4.error, OSError, UnicodeError) as exc:
            raise MailQueryError(f"STATUS {label} failed: {exc}") from exc
        if typ != "OK":
            raise MailQueryError(f"STATUS {label} returned {typ}: {data!r}")
        return parse_unseen_counts(data or [])

    def unread_count(self, label: str) -> int:
        return sum(self.unseen_counts(label))

    def close(self) -> None:
        # LOGOUT only: CLOSE would expunge the selected mailbox.
        try:
            self._client.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            LOGGER.debug("Logout failed: %s", exc, extra={"category": "mail"})
