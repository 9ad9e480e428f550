"""Exception types raised across the retrieval engine."""


class DocQAError(Exception):
    """Base class for all docqa errors."""


class ConnectorError(DocQAError):
    """A document source or the documentation site could not be reached."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


class EmbeddingServiceError(DocQAError):
    """The embedding service failed or returned an unusable response."""


class IndexEmptyError(DocQAError):
    """A query was made while nothing is indexed."""

    def __init__(self, message: str = "No documents indexed. Run a reindex first."):
        super().__init__(message)


class RetrievalUnavailableError(DocQAError):
    """Neither vector nor keyword scoring could produce results."""
