"""Failures raised by time-series store implementations."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store transport and request failures."""


class StoreUnavailable(StoreError):
    """The store could not be reached or did not answer in time."""


class QueryRejected(StoreError):
    """The store refused a query (syntax, permissions, unknown bucket)."""


class WriteRejected(StoreError):
    """The store refused a point write."""
