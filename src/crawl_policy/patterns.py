"""Classify URLs into named patterns with extracted parameters.

Template syntax (matched against the URL path):

- ``:name`` captures one path segment; ``:name?`` may capture nothing, and a
  preceding ``/`` becomes optional with it.
- ``*`` matches within a segment; ``**`` matches across segments.
- A trailing ``?key=:param&...`` clause reads extra parameters from the query
  string. Missing query values never prevent a match.

A ``match`` may instead be a compiled regular expression; its named groups
become parameters.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping
from urllib.parse import ParseResult, parse_qs, unquote, urlparse

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = "default"

_TOKEN_RE = re.compile(r"\*\*|\*|:([A-Za-z_][A-Za-z0-9_]*)(\?)?")
_QUERY_CLAUSE_RE = re.compile(r"\?(?=[^/?]*=)")


@dataclass(frozen=True)
class CompiledTemplate:
    regex: re.Pattern[str]
    param_names: tuple[str, ...]
    query_params: tuple[tuple[str, str], ...] = ()


def compile_template(template: str) -> CompiledTemplate:
    """Compile a path template; raises ``ValueError`` when it is malformed."""

    if not isinstance(template, str) or not template:
        raise ValueError(f"template must be a non-empty string: {template!r}")

    path, query = template, ""
    m = _QUERY_CLAUSE_RE.search(template)
    if m is not None:
        path, query = template[: m.start()], template[m.end() :]

    parts: list[str] = []
    names: list[str] = []
    pos = 0
    for tok in _TOKEN_RE.finditer(path):
        literal = path[pos : tok.start()]
        pos = tok.end()
        text = tok.group(0)
        if text == "**":
            parts.append(re.escape(literal) + ".*")
            continue
        if text == "*":
            parts.append(re.escape(literal) + "[^/]*")
            continue

        name = tok.group(1)
        if name in names:
            raise ValueError(f"duplicate parameter {name!r} in {template!r}")
        names.append(name)
        if tok.group(2) and literal.endswith("/"):
            parts.append(re.escape(literal[:-1]) + "(?:/([^/]*))?")
        elif tok.group(2):
            parts.append(re.escape(literal) + "([^/]*)")
        else:
            parts.append(re.escape(literal) + "([^/]+)")
    parts.append(re.escape(path[pos:]))
    path_names = tuple(names)

    body = "".join(parts)
    if not path.endswith("/") and not path.endswith("**"):
        body += "/?"

    query_params: list[tuple[str, str]] = []
    for pair in query.split("&") if query else ():
        key, sep, value = pair.partition("=")
        name = value[1:]
        if not (sep and value.startswith(":") and name):
            continue
        if name in names:
            raise ValueError(f"duplicate parameter {name!r} in {template!r}")
        names.append(name)
        query_params.append((key, name))

    return CompiledTemplate(
        regex=re.compile(f"^{body}$"),
        param_names=path_names,
        query_params=tuple(query_params),
    )


@dataclass(frozen=True)
class CompiledPattern:
    name: str
    template: str | None
    activities: tuple[str, ...] = ()
    extract: Mapping[str, str] = field(default_factory=dict)
    priority: float = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)
    compiled: CompiledTemplate | None = None
    regex: re.Pattern[str] | None = None

    @property
    def param_names(self) -> tuple[str, ...]:
        if self.compiled is not None:
            return self.compiled.param_names + tuple(
                q for _, q in self.compiled.query_params
            )
        if self.regex is not None:
            return tuple(self.regex.groupindex)
        return ()

    def match_path(self, path: str, query: Mapping[str, list[str]]) -> dict | None:
        if self.regex is not None:
            m = self.regex.search(path)
            if m is None:
                return None
            return {
                k: unquote(v) for k, v in m.groupdict().items() if v is not None
            }
        if self.compiled is None:
            return None

        m = self.compiled.regex.match(path)
        if m is None:
            return None
        params = {
            name: unquote(value or "")
            for name, value in zip(self.compiled.param_names, m.groups())
        }
        for key, name in self.compiled.query_params:
            values = query.get(key)
            if values:
                params[name] = values[0]
        return params


@dataclass(frozen=True)
class MatchResult:
    pattern: str
    params: dict[str, str] = field(default_factory=dict)
    activities: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    priority: float = 0
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "params": dict(self.params),
            "activities": list(self.activities),
            "metadata": dict(self.metadata),
            "priority": self.priority,
            "is_default": self.is_default,
        }


def _extract_value(
    source: str, parsed: ParseResult, query: Mapping[str, list[str]]
) -> str | None:
    kind, _, arg = source.partition(":")
    if kind == "query":
        values = query.get(arg)
        return values[0] if values else None
    if kind == "segment":
        segments = [s for s in parsed.path.split("/") if s]
        try:
            return unquote(segments[int(arg)])
        except (ValueError, IndexError):
            return None
    if kind == "host":
        return parsed.hostname
    return None


def _priority_of(name: str, value: Any) -> float:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"pattern {name!r}: priority must be a number: {value!r}")
    return value


def build_pattern(name: str, config: Mapping[str, Any]) -> CompiledPattern:
    """Build a :class:`CompiledPattern`; malformed templates match nothing."""

    match = config.get("match")
    compiled: CompiledTemplate | None = None
    regex: re.Pattern[str] | None = None
    if isinstance(match, re.Pattern):
        regex = match
    elif match is not None:
        try:
            compiled = compile_template(match)
        except (ValueError, re.error) as e:
            logger.warning("pattern %r will never match: %s", name, e)

    return CompiledPattern(
        name=name,
        template=match.pattern if isinstance(match, re.Pattern) else match,
        activities=tuple(config.get("activities") or ()),
        extract=dict(config.get("extract") or {}),
        priority=_priority_of(name, config.get("priority")),
        metadata=dict(config.get("metadata") or {}),
        compiled=compiled,
        regex=regex,
    )


class URLPatternMatcher:
    def __init__(self, patterns: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._patterns: dict[str, CompiledPattern] = {}
        self._default: CompiledPattern | None = None
        self._stats: Counter[str] = Counter()
        for name, config in (patterns or {}).items():
            self.add_pattern(name, config)

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def add_pattern(self, name: str, config: Mapping[str, Any]) -> None:
        pattern = build_pattern(name, config)
        if pattern.template is not None and not (pattern.compiled or pattern.regex):
            self._stats["malformed"] += 1
        if name == DEFAULT_PATTERN:
            self._default = pattern
        else:
            self._patterns[name] = pattern

    def remove_pattern(self, name: str) -> bool:
        if name == DEFAULT_PATTERN:
            removed = self._default is not None
            self._default = None
            return removed
        return self._patterns.pop(name, None) is not None

    def get_pattern_names(self) -> list[str]:
        return list(self._patterns)

    def match(self, url: str) -> MatchResult | None:
        """Best pattern for ``url`` by (priority, parameter count), else default."""

        try:
            parsed = urlparse(url)
        except (TypeError, ValueError):
            self._stats["unmatched"] += 1
            return None
        path = parsed.path or "/"
        query = parse_qs(parsed.query, keep_blank_values=False)

        best: tuple[float, int] | None = None
        result: MatchResult | None = None
        for pattern in self._patterns.values():
            params = pattern.match_path(path, query)
            if params is None:
                continue
            for out_name, source in pattern.extract.items():
                value = _extract_value(source, parsed, query)
                if value is not None:
                    params[out_name] = value
            rank = (pattern.priority, sum(1 for v in params.values() if v != ""))
            if best is None or rank > best:
                best = rank
                result = MatchResult(
                    pattern=pattern.name,
                    params=params,
                    activities=list(pattern.activities),
                    metadata=dict(pattern.metadata),
                    priority=pattern.priority,
                )

        if result is not None:
            self._stats["matched"] += 1
            return result
        if self._default is not None:
            self._stats["default"] += 1
            return MatchResult(
                pattern=DEFAULT_PATTERN,
                activities=list(self._default.activities),
                metadata=dict(self._default.metadata),
                priority=self._default.priority,
                is_default=True,
            )
        self._stats["unmatched"] += 1
        return None

    def matches(self, url: str) -> bool:
        result = self.match(url)
        return result is not None and not result.is_default

    def filter_urls(
        self, urls: Iterable[str], pattern_names: Iterable[str] | None = None
    ) -> list[dict[str, Any]]:
        """Pair each URL with its match, keeping only the named patterns.

        Without ``pattern_names`` every non-default match is kept; include
        ``"default"`` in ``pattern_names`` to keep fallback matches.
        """

        wanted = set(pattern_names) if pattern_names is not None else None
        out: list[dict[str, Any]] = []
        for url in urls:
            result = self.match(url)
            if result is None:
                continue
            if wanted is None:
                keep = not result.is_default
            else:
                keep = result.pattern in wanted
            if keep:
                out.append({"url": url, "match": result})
        return out
