"""
RequestGuard — Pattern Attack Detector
=======================================

What:  Scans query parameters, body fields and the URL path for known
       injection and XSS signatures.
Why:   A cheap tripwire in front of handlers that build queries or render
       user content. It is NOT a substitute for parameterized queries or
       output encoding; it catches the noisy, automated probes early and
       gives the audit log something to alert on.
How:   Walk the nested structure, test every string leaf against ordered
       rule sets, stop at the first match.

Rule Sets (evaluated in this order, each as a separate pass):
    1. sql    - DML/DDL keywords, UNION ... SELECT, OR 1=1, comment markers
    2. xss    - <script>, javascript:/vbscript:, on*= handlers, iframe/object/embed,
                data:text/html, CSS expression()
    3. nosql  - Mongo operators ($where, $ne, ...) in values, `$`-prefixed keys,
                prototype-pollution keys (__proto__, constructor, prototype)
    Path rules (traversal, NUL bytes) run against the URL path only.

Policy: REJECT, never rewrite.
    There is no "strip the dangerous substring and carry on" mode. A payload
    that was cleaned is a payload whose meaning changed silently; rejecting
    is strictly safer and the client gets a clear 400.

Edge cases:
    - Non-string leaves (int, float, bool, None) are never tested
    - Empty dicts/lists contain zero leaves and pass
    - The walk uses an explicit stack, so deeply nested JSON cannot blow the
      Python recursion limit
    - Detector state is immutable after import: scanning the same payload
      twice always yields the same verdict
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from requestguard.exceptions import PatternAttackDetectedError
from requestguard.guards.base import ALLOW, Verdict

SQL = "sql"
XSS = "xss"
NOSQL = "nosql"
PATH = "path"


@dataclass(frozen=True)
class AttackSignature:
    """A named regular-expression rule belonging to one category."""

    name: str
    category: str
    pattern: "re.Pattern[str]"

    def matches(self, value: str) -> bool:
        return self.pattern.search(value) is not None


def _rule(name: str, category: str, regex: str, flags: int = re.IGNORECASE) -> AttackSignature:
    return AttackSignature(name=name, category=category, pattern=re.compile(regex, flags))


# ── SQL injection ─────────────────────────────────────────────────────────
SQL_SIGNATURES: Tuple[AttackSignature, ...] = (
    _rule(
        "sql_keyword",
        SQL,
        r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE|TRUNCATE)\b",
    ),
    _rule("sql_union_select", SQL, r"\bUNION\b.*\bSELECT\b", re.IGNORECASE | re.DOTALL),
    _rule("sql_tautology", SQL, r"\bOR\s+1\s*=\s*1\b"),
    # `#` alone is common in addresses ("Room #4"); only flag it after a quote
    _rule("sql_comment", SQL, r"(--|/\*|\*/|['\"]\s*#)"),
)

# ── Cross-site scripting ──────────────────────────────────────────────────
XSS_SIGNATURES: Tuple[AttackSignature, ...] = (
    _rule("xss_script_tag", XSS, r"<\s*script\b"),
    _rule("xss_javascript_uri", XSS, r"javascript\s*:"),
    _rule("xss_vbscript_uri", XSS, r"vbscript\s*:"),
    _rule("xss_event_handler", XSS, r"\bon\w+\s*="),
    _rule("xss_iframe", XSS, r"<\s*iframe\b"),
    _rule("xss_object", XSS, r"<\s*object\b"),
    _rule("xss_embed", XSS, r"<\s*embed\b"),
    _rule("xss_data_html", XSS, r"data\s*:\s*text/html"),
    _rule("xss_css_expression", XSS, r"expression\s*\("),
)

# ── NoSQL operator injection ──────────────────────────────────────────────
NOSQL_SIGNATURES: Tuple[AttackSignature, ...] = (
    _rule(
        "nosql_operator",
        NOSQL,
        r"\$(where|regex|ne|gt|gte|lt|lte|in|nin|or|and|not|nor|exists|type|mod|text|geoWithin)\b",
    ),
)

FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})

# ── URL path ──────────────────────────────────────────────────────────────
PATH_SIGNATURES: Tuple[AttackSignature, ...] = (
    _rule("path_traversal", PATH, r"(\.\./|\.\.\\|%2e%2e(%2f|%5c|/))"),
    _rule("path_null_byte", PATH, r"(\x00|%00)"),
)

DEFAULT_RULE_SETS: Tuple[Tuple[AttackSignature, ...], ...] = (
    SQL_SIGNATURES,
    XSS_SIGNATURES,
    NOSQL_SIGNATURES,
)


def iter_string_leaves(data: Any, location: str = "$") -> Iterator[Tuple[str, str]]:
    """Yield (location, value) for every string leaf, depth-first."""
    stack: List[Tuple[str, Any]] = [(location, data)]
    while stack:
        loc, value = stack.pop()
        if isinstance(value, str):
            yield loc, value
        elif isinstance(value, dict):
            items = list(value.items())
            for key, child in reversed(items):
                stack.append((f"{loc}.{key}", child))
        elif isinstance(value, (list, tuple)):
            for index in range(len(value) - 1, -1, -1):
                stack.append((f"{loc}[{index}]", value[index]))


def iter_keys(data: Any, location: str = "$") -> Iterator[Tuple[str, str]]:
    """Yield (location, key) for every string dict key, depth-first."""
    stack: List[Tuple[str, Any]] = [(location, data)]
    while stack:
        loc, value = stack.pop()
        if isinstance(value, dict):
            for key, child in value.items():
                if isinstance(key, str):
                    yield loc, key
                stack.append((f"{loc}.{key}", child))
        elif isinstance(value, (list, tuple)):
            for index, child in enumerate(value):
                stack.append((f"{loc}[{index}]", child))


class PatternAttackDetector:
    """
    Stateless signature scanner.

    Args:
        rule_sets:     Ordered rule sets; each is a full pass over all leaves
        path_rules:    Rules applied to the URL path by scan_request()
        check_keys:    Also flag `$`-prefixed and prototype-pollution keys
    """

    def __init__(
        self,
        rule_sets: Sequence[Iterable[AttackSignature]] = DEFAULT_RULE_SETS,
        path_rules: Iterable[AttackSignature] = PATH_SIGNATURES,
        check_keys: bool = True,
    ):
        self.rule_sets = tuple(tuple(rules) for rules in rule_sets)
        self.path_rules = tuple(path_rules)
        self.check_keys = check_keys

    def match(self, data: Any, location: str = "$") -> Optional[Tuple[AttackSignature, str]]:
        """Return the first (rule, location) that matches, or None."""
        if data is None:
            return None
        for rules in self.rule_sets:
            for loc, value in iter_string_leaves(data, location):
                for rule in rules:
                    if rule.matches(value):
                        return rule, loc
        if self.check_keys:
            for loc, key in iter_keys(data, location):
                if key.startswith("$") or key in FORBIDDEN_KEYS:
                    return _FORBIDDEN_KEY_RULE, f"{loc}.{key}"
        return None

    def scan(self, data: Any, location: str = "$") -> Verdict:
        """Clean → ALLOW; Flagged → deny with a generic PatternAttackDetectedError."""
        hit = self.match(data, location)
        if hit is None:
            return ALLOW
        return self._flagged(*hit)

    def scan_path(self, *paths: str) -> Verdict:
        """Check the decoded path and, when given, the raw (still-encoded) path."""
        for path in paths:
            if not path:
                continue
            for rule in self.path_rules:
                if rule.matches(path):
                    return self._flagged(rule, "path")
        return ALLOW

    def scan_request(
        self,
        query: Any = None,
        body: Any = None,
        path: str = "",
        raw_path: str = "",
    ) -> Verdict:
        """Scan path, then query, then body. First flag wins."""
        verdict = self.scan_path(path, raw_path)
        if not verdict.allowed:
            return verdict
        verdict = self.scan(query, "query")
        if not verdict.allowed:
            return verdict
        return self.scan(body, "body")

    @staticmethod
    def _flagged(rule: AttackSignature, location: str) -> Verdict:
        return Verdict.deny(
            PatternAttackDetectedError(
                context={"category": rule.category, "rule": rule.name, "location": location}
            )
        )


_FORBIDDEN_KEY_RULE = AttackSignature(
    name="nosql_forbidden_key",
    category=NOSQL,
    pattern=re.compile(r"^(\$|__proto__$|constructor$|prototype$)"),
)
