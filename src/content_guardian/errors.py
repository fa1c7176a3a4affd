"""Exception types shared by the pipeline, connectors, and analysis client."""

from __future__ import annotations


class SourceNotFoundError(LookupError):
    """Raised when a run is triggered for an unknown or deleted source."""


class RunNotFoundError(LookupError):
    """Raised when an ingestion run id does not exist."""


class ConnectorConfigError(RuntimeError):
    """Source cannot be fetched because of its configuration (no targets, no connector)."""


class AnalysisUnavailableError(RuntimeError):
    """Compliance analysis collaborator is not configured."""


class AnalysisRequestError(RuntimeError):
    """One analysis submission failed at transport or HTTP level."""
