"""Error taxonomy for the knowledge retrieval core.

The HTTP boundary maps these onto status codes; background workers log and
skip them per chunk.
"""

from __future__ import annotations


class KnowledgeError(Exception):
    """Base class for all knowledge core errors."""


class ValidationError(KnowledgeError):
    """Caller input is missing or malformed. Never retried."""


class NotFoundError(KnowledgeError):
    """A referenced knowledge item does not exist in the workspace."""


class ProviderError(KnowledgeError):
    """The embedding/completion provider failed after retries."""


class PermissionFilterError(KnowledgeError):
    """The permission filter raised; the evidence pack fails closed."""


class RedactionError(KnowledgeError):
    """The PII redactor raised; the evidence pack fails closed."""


class SearchTimeoutError(KnowledgeError):
    """Hybrid ranking did not finish within its deadline."""
