"""Exception types raised by the summit database."""


class OfflineQthError(Exception):
    """Base class for summit database errors."""


class CorruptBlobError(OfflineQthError):
    """The database blob could not be decoded or fails its own row counts."""


class StoreUnavailableError(OfflineQthError):
    """No summit store could be loaded from cache, network or disk.

    Callers should render an offline/unavailable state, never "no results".
    """


class DownloadError(OfflineQthError):
    """The database blob could not be fetched from the network."""


class IngestionError(OfflineQthError):
    """Fatal setup problem for an ingestion run (missing source, bad output dir)."""
