from __future__ import annotations


class IngestError(Exception):
    """
    Fatal to the ingestion run: the run is marked failed with `message`
    and no further items are processed.
    """
    code = "ingest_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FeedParseError(IngestError):
    code = "feed_parse_error"


class FeedTooLargeError(IngestError):
    code = "feed_too_large"


class FeedFetchError(IngestError):
    code = "feed_fetch_error"


class BatchFlushError(IngestError):
    code = "batch_flush_error"


class ItemError(Exception):
    """
    Item-level failure: recorded as a FeedError row, the item is skipped
    and the run continues.
    """
    code = "item_error"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class MappingError(ItemError):
    code = "mapping_error"


class MissingIdentifierError(ItemError):
    code = "missing_identifier"
