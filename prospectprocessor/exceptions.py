"""Exception hierarchy shared by the identification and enrichment pipeline."""

from __future__ import annotations


class ProspectProcessorError(Exception):
    """Base class for all pipeline errors."""


class SignalLookupError(ProspectProcessorError):
    """A single identity source failed while resolving an IP address.

    Raised by source adapters and always absorbed by the resolver cascade.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")


class ExternalAPIError(ProspectProcessorError):
    """An external HTTP provider returned an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class IPInfoAPIError(ExternalAPIError):
    """The ASN/organization lookup API failed."""


class FirmographicAPIError(ExternalAPIError):
    """The firmographic enrichment or search API failed."""


class DocumentNotFoundError(ProspectProcessorError):
    """An update was staged against a document that does not exist."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"No document {document_id!r} in collection {collection!r}")


class BatchCommitError(ProspectProcessorError):
    """The atomic end-of-cycle write failed; nothing from the batch was persisted."""

    def __init__(self, message: str, staged_writes: int = 0) -> None:
        self.staged_writes = staged_writes
        super().__init__(message)


class InvalidVisitError(ProspectProcessorError):
    """A tracked visit payload is missing required fields or has bad values."""


__all__ = [
    "ProspectProcessorError",
    "SignalLookupError",
    "ExternalAPIError",
    "IPInfoAPIError",
    "FirmographicAPIError",
    "DocumentNotFoundError",
    "BatchCommitError",
    "InvalidVisitError",
]
