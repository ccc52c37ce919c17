"""
Error types for ConceptSync.

Ownership and not-found errors fail fast. LLM format errors are converted to
an explicit "no result" by the operation that issued the call, so batch loops
can keep going and the dirty flags stay set for the next pass.
"""


class ConceptSyncError(Exception):
    """Base exception for all engine operations."""
    pass


class AuthorizationError(ConceptSyncError):
    """Raised when a row belongs to a different user than the caller."""
    pass


class NotFoundError(ConceptSyncError):
    """Raised when a referenced row does not exist."""
    pass


class ConceptNotFoundError(NotFoundError):
    pass


class DocumentNotFoundError(NotFoundError):
    pass


class BlockNotFoundError(NotFoundError):
    pass


class KnowledgeDataNotFoundError(NotFoundError):
    pass


class LLMError(ConceptSyncError):
    """Raised when Ollama cannot be reached or answers with an HTTP error."""
    pass


class LLMFormatError(ConceptSyncError):
    """Raised when a model response does not follow the expected grammar."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response
