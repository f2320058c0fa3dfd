"""Exception hierarchy for opstate."""


class OpstateError(Exception):
    """Base class for opstate errors."""


class StoreError(OpstateError):
    """The state store could not complete an operation."""


class StoreWriteError(StoreError):
    """A write to the state store failed."""


class StoreReadError(StoreError):
    """A read from the state store failed."""


class TransportDeliveryError(OpstateError):
    """A reply could not be delivered to the chat transport."""
