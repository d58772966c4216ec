"""Error taxonomy shared by ingestion, retrieval, answering and metering.

Every error carries a stable ``kind`` string (recorded on documents and in
usage metadata) and a ``retryable`` flag so callers can pick a retry policy
without inspecting messages.
"""


class RagError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RagError):
    """Bad input from the caller (4xx-equivalent)."""

    kind = "validation"


class NotFoundError(ValidationError):
    """Referenced document or chunk does not exist for this tenant."""

    kind = "not_found"


class LimitExceeded(ValidationError):
    """Tenant has used up its plan allowance for an event type."""

    kind = "limit_exceeded"

    def __init__(self, event_type: str, used: int, limit: int) -> None:
        super().__init__(f"Plan limit reached for {event_type}: {used} of {limit} used")
        self.event_type = event_type
        self.used = used
        self.limit = limit


class IngestionConflict(ValidationError):
    """Document is not in a state that allows the requested transition."""

    kind = "conflict"

    def __init__(self, document_id: object, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} document {document_id} while it is {status}")
        self.status = status


class ConfigurationError(RagError):
    """Operator misconfiguration: missing credential, dimension mismatch."""

    kind = "configuration"


class EmbeddingUnavailable(ConfigurationError):
    """No embedding provider credential is configured."""

    kind = "embedding_unavailable"


class ProviderError(RagError):
    """Transient failure talking to an external AI provider."""

    kind = "provider"
    retryable = True


class EmbeddingProviderError(ProviderError):
    """Embedding call failed (network, rate limit, invalid input, timeout)."""

    kind = "embedding_provider"


class LLMProviderError(ProviderError):
    """Language model call failed or returned nothing usable."""

    kind = "llm_provider"


class StoreError(RagError):
    """Persistence failure; partial writes are rolled back."""

    kind = "store"
    retryable = True
