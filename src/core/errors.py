"""Storage error raised by the Cassandra-backed services."""


class StorageError(Exception):
    """A read against Cassandra failed or returned undecodable data."""

    def __init__(self, message: str, operation: str = "query"):
        self.message = message
        self.operation = operation
        super().__init__(message)
