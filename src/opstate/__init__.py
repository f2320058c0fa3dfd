"""opstate: tracks the production state of clients and editors from chat."""

__version__ = "0.1.0"
