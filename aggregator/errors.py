class AggregatorError(Exception):
    """Base class for link aggregator failures."""


class SourceError(AggregatorError):
    """A source list client could not produce a batch (bad credentials, API error, empty reply)."""


class RunInProgressError(AggregatorError):
    """Another run holds the run flag."""


class NoSourcesError(AggregatorError):
    """No source could be fetched and there is no previous snapshot to fall back on."""
