class SearchError(Exception):
    """Base class for failures raised by the search pipeline."""


class InvalidQuery(SearchError):
    """The caller sent a query the engine cannot run (no text and no image)."""


class EmbeddingFailure(SearchError):
    """The embedding provider errored, timed out or returned garbage."""


class CatalogFailure(SearchError):
    """The ranking or enrichment lookup against storage failed."""


class EnrichmentGap(SearchError):
    """A single ranked item could not be enriched and was left out."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"item {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason
