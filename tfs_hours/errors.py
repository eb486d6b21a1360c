"""
Error taxonomy for the hours ledger.

The API layer maps these onto HTTP status codes; the CLI prints them and
exits non-zero.
"""


class HoursError(Exception):
    """Base class for all hours-ledger errors."""

    pass


class ValidationError(HoursError):
    """Raised for malformed input: bad dates, empty batches, bad filters."""

    pass


class PersistenceError(HoursError):
    """Raised when the store fails; any ingest transaction has been rolled back."""

    pass


class ConfigError(HoursError):
    """Raised when a configuration value cannot be parsed."""

    pass
