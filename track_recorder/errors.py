"""Exceptions raised by collaborator boundaries (storage, location source)."""

from __future__ import annotations


class TrackRecorderError(Exception):
    """Base class for all track_recorder errors."""


class StorageError(TrackRecorderError):
    """The persistence substrate failed to read or write."""


class LocationPermissionError(TrackRecorderError):
    """The location source refused access."""


class LocationTimeoutError(TrackRecorderError):
    """No fix arrived within the allotted time."""


class LocationUnavailableError(TrackRecorderError):
    """The location source could not start delivering updates."""
