"""cdcwave Exceptions"""


class CDCWaveError(Exception):
    """Base exception for cdcwave"""
    pass


class ParseError(CDCWaveError):
    """Raw change record does not match the logical decoding grammar"""
    def __init__(self, message: str, record: str = None, position: int = None):
        if record is not None and position is not None:
            message = f"{message} at position {position}: {record!r}"
        elif record is not None:
            message = f"{message}: {record!r}"
        super().__init__(message)
        self.record = record
        self.position = position


class ConfigurationError(CDCWaveError):
    """Invalid or missing configuration"""
    pass


class SchemaError(CDCWaveError):
    """Column type mapping or change validation error"""
    pass


class OffsetOrderError(CDCWaveError):
    """Offsets committed out of stream order"""
    def __init__(self, message: str, previous=None, current=None):
        super().__init__(message)
        self.previous = previous
        self.current = current


class TransientIOError(CDCWaveError):
    """Temporary failure reading from a change feed"""
    def __init__(self, message: str, retry_after: int = None):
        super().__init__(message)
        self.retry_after = retry_after
