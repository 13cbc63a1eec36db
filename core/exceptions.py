class PaiError(Exception):
    """Base class for all exceptions in the PAI event log."""
    pass

class ConfigurationError(PaiError):
    """Raised when there is a configuration-related error."""
    pass

class EventIndexError(PaiError):
    """Raised when the SQLite secondary index cannot be opened or recreated."""
    pass

class SummaryFormatError(PaiError):
    """Raised when a serialized period summary is missing fields or malformed."""
    pass
