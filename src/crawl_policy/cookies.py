"""Cookie records, ``Set-Cookie`` parsing and the domain-keyed cookie jar.

The jar is keyed by normalized domain (no leading dot). Within one domain,
records are unique by ``(name, path)``; storing an existing pair replaces the
record in place so insertion order stays stable.

Expiry is kept as POSIX seconds (``None`` for session cookies). Expired
records are skipped on reads but only removed by ``clear``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import urlparse

from .urls import domain_matches, host_of, normalize_domain

SAME_SITE_VALUES = ("Strict", "Lax", "None")


def normalize_same_site(value: str | None) -> str:
    if not value:
        return "Lax"
    normalized = value[:1].upper() + value[1:].lower()
    return normalized if normalized in SAME_SITE_VALUES else "Lax"


@dataclass(frozen=True)
class CookieRecord:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float | None = None
    secure: bool = False
    http_only: bool = False
    same_site: str = "Lax"
    source: str = "manual"
    updated_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return self.expires is not None and self.expires <= now

    def applies_to(
        self, host: str, path: str, *, is_secure: bool, now: float
    ) -> bool:
        if not (
            domain_matches(host, self.domain) or domain_matches(self.domain, host)
        ):
            return False
        if not path.startswith(self.path or "/"):
            return False
        if self.is_expired(now):
            return False
        if self.secure and not is_secure:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "sameSite": self.same_site,
            "source": self.source,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        source: str,
        now: float,
    ) -> CookieRecord | None:
        """Build a record from a plain mapping (driver, JSON or caller input).

        Accepts camelCase or snake_case keys. The domain falls back to the
        host of ``url`` when absent. Returns ``None`` when no name or domain
        can be determined.
        """

        name = str(data.get("name") or "")
        domain = data.get("domain") or host_of(str(data.get("url") or ""))
        if not name or not domain:
            return None

        expires = data.get("expires")
        http_only = data.get("httpOnly", data.get("http_only", False))
        same_site = data.get("sameSite", data.get("same_site"))
        return cls(
            name=name,
            value=str(data.get("value") or ""),
            domain=normalize_domain(str(domain)),
            path=str(data.get("path") or "/"),
            expires=float(expires) if expires is not None else None,
            secure=bool(data.get("secure", False)),
            http_only=bool(http_only),
            same_site=str(same_site or "Lax"),
            source=source,
            updated_at=now,
        )


def _parse_expires(value: str) -> float | None:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def parse_set_cookie(
    header: str,
    url: str,
    *,
    now: float | None = None,
    source: str = "http",
) -> CookieRecord | None:
    """Parse one ``Set-Cookie`` header value received from ``url``.

    Attribute names are case-insensitive. ``Max-Age`` wins over ``Expires``
    regardless of order; an unparsable ``Expires`` is dropped.
    """

    if not header or not isinstance(header, str):
        return None
    now = time.time() if now is None else now

    name_value, *attrs = [part.strip() for part in header.split(";")]
    name, sep, value = name_value.partition("=")
    name = name.strip()
    if not sep or not name:
        return None

    domain = host_of(url)
    path = "/"
    expires: float | None = None
    max_age: int | None = None
    secure = False
    http_only = False
    same_site = "Lax"

    for attr in attrs:
        key, sep, val = attr.partition("=")
        key = key.strip().lower()
        val = val.strip()
        if not sep:
            if key == "secure":
                secure = True
            elif key == "httponly":
                http_only = True
            continue

        if key == "domain" and val:
            domain = normalize_domain(val)
        elif key == "path":
            path = val or "/"
        elif key == "expires":
            expires = _parse_expires(val)
        elif key == "max-age":
            try:
                max_age = int(val)
            except ValueError:
                continue
        elif key == "samesite":
            same_site = val

    if max_age is not None:
        expires = now + max_age
    if not domain:
        return None

    return CookieRecord(
        name=name,
        value=value.strip(),
        domain=normalize_domain(domain),
        path=path,
        expires=expires,
        secure=secure,
        http_only=http_only,
        same_site=same_site,
        source=source,
        updated_at=now,
    )


class CookieJar:
    """Per-domain cookie store. Not thread-safe; serialize writers."""

    def __init__(self) -> None:
        self._by_domain: dict[str, list[CookieRecord]] = {}

    def __len__(self) -> int:
        return sum(len(records) for records in self._by_domain.values())

    def __iter__(self) -> Iterator[CookieRecord]:
        for records in self._by_domain.values():
            yield from records

    def domains(self) -> list[str]:
        return list(self._by_domain)

    def store(self, record: CookieRecord) -> None:
        domain = normalize_domain(record.domain)
        if domain != record.domain:
            record = replace(record, domain=domain)
        records = self._by_domain.setdefault(domain, [])
        for idx, existing in enumerate(records):
            if existing.name == record.name and existing.path == record.path:
                records[idx] = record
                return
        records.append(record)

    def store_all(self, records: Iterable[CookieRecord]) -> None:
        for record in records:
            self.store(record)

    def matching(self, url: str, *, now: float) -> list[CookieRecord]:
        if not url:
            return []
        try:
            parsed = urlparse(url)
        except ValueError:
            return []
        host = (parsed.hostname or "").lower()
        if not host:
            return []
        path = parsed.path or "/"
        is_secure = parsed.scheme.lower() == "https"

        return [
            record
            for record in self
            if record.applies_to(host, path, is_secure=is_secure, now=now)
        ]

    def for_domain(self, domain: str) -> list[CookieRecord]:
        domain = normalize_domain(domain)
        out: list[CookieRecord] = []
        for cookie_domain, records in self._by_domain.items():
            if domain_matches(domain, cookie_domain) or domain_matches(
                cookie_domain, domain
            ):
                out.extend(records)
        return out

    def clear(self, domain: str | None = None) -> None:
        if domain is None:
            self._by_domain.clear()
        else:
            self._by_domain.pop(normalize_domain(domain), None)
