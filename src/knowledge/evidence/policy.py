"""Permission filtering and PII redaction for evidence.

The evidence pack consumes both as capabilities (PermissionFilter, Redactor).
The defaults here cover record ownership and the common PII shapes; a policy
service can be plugged in through the same protocols.
"""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable

import structlog

from src.knowledge.schemas import Evidence, Requester

logger = structlog.get_logger(__name__)

READ_ALL_PERMISSIONS = frozenset({"global:read_all", "records:read_all"})


@runtime_checkable
class PermissionFilter(Protocol):
    def filter(self, requester: Requester, evidence: list[Evidence]) -> list[Evidence]:
        """Return the evidence the requester may read, in the same order."""
        ...


@runtime_checkable
class Redactor(Protocol):
    def redact(self, evidence: list[Evidence]) -> list[Evidence]:
        """Return evidence with sensitive content replaced and flagged."""
        ...


# ── Ownership filter ────────────────────────────────────────────────────────


class OwnershipPermissionFilter:
    """Hide records owned by someone else unless the requester can read all.

    An item is owned when its metadata carries an ``owner_id``. Items without
    an owner are visible to everyone in the workspace.
    """

    def __init__(self, read_all_permissions: frozenset[str] = READ_ALL_PERMISSIONS) -> None:
        self._read_all = read_all_permissions

    def filter(self, requester: Requester, evidence: list[Evidence]) -> list[Evidence]:
        if self._read_all.intersection(requester.permissions):
            return list(evidence)

        visible = []
        for item in evidence:
            owner_id = (item.metadata or {}).get("owner_id")
            if owner_id is None or str(owner_id) == requester.user_id:
                visible.append(item)
        return visible


# ── PII redaction ───────────────────────────────────────────────────────────

# Applied in order: email, SSN, phone
_PII_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("EMAIL", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("SSN", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    (
        "PHONE",
        # Needs separators, parentheses or a leading + so bare digit runs
        # (invoice numbers, amounts) are left alone
        re.compile(
            r"(?<![\w+])\+\d{7,15}\b"
            r"|(?:(?<![\w+])\+\d{1,3}[\s.-]?)?(?:\(\d{2,4}\)\s?|\b\d{2,4}[\s.-])\d{3,4}[\s.-]\d{4}\b"
            r"|\b\d{3}-\d{4}\b"
        ),
    ),
]


class PIIRedactor:
    """Replace emails, SSNs and phone numbers in snippets with tokens.

    Tokens look like ``[EMAIL_1]`` and are numbered per distinct value across
    one ``redact`` call, so the same address maps to the same token in every
    source of a pack. Only snippets are rewritten.
    """

    def redact(self, evidence: list[Evidence]) -> list[Evidence]:
        tokens: dict[tuple[str, str], str] = {}
        counts: dict[str, int] = {}

        redacted: list[Evidence] = []
        for item in evidence:
            if not item.snippet:
                redacted.append(item)
                continue
            text, changed = self._redact_text(item.snippet, tokens, counts)
            if changed:
                redacted.append(item.model_copy(update={"snippet": text, "pii_redacted": True}))
            else:
                redacted.append(item)

        if tokens:
            logger.debug("pii_redacted", replacements=len(tokens), kinds=sorted(counts))
        return redacted

    @staticmethod
    def _redact_text(
        text: str, tokens: dict[tuple[str, str], str], counts: dict[str, int]
    ) -> tuple[str, bool]:
        changed = False
        for kind, pattern in _PII_PATTERNS:

            def _replace(match: re.Match, kind: str = kind) -> str:
                key = (kind, match.group(0))
                if key not in tokens:
                    counts[kind] = counts.get(kind, 0) + 1
                    tokens[key] = f"[{kind}_{counts[kind]}]"
                return tokens[key]

            text, n = pattern.subn(_replace, text)
            changed = changed or n > 0
        return text, changed
