"""Exception types shared by the store and completion collaborators."""


class StoreError(Exception):
    """Base class for remote store failures."""


class StoreUnavailableError(StoreError):
    """The remote store could not be reached or failed mid-operation."""


class StoreRejectedError(StoreError):
    """The remote store refused the operation (permission or validation)."""


class CompletionTransportError(Exception):
    """The completion service could not be reached."""
