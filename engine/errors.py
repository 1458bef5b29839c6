"""Error taxonomy shared by the data sources, the engine and the HTTP layer."""

from __future__ import annotations


class UpstreamFetchError(RuntimeError):
    """A market or news source could not be reached or returned unusable data."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class AIValidationError(ValueError):
    """AI output was malformed or out of range; always triggers the fallback."""


class DegenerateInputError(ValueError):
    """Snapshot values the indicator formulas cannot work with."""
