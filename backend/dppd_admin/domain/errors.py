class StorageError(Exception):
    """Raised by blob store adapters when a read or write cannot be completed."""

    def __init__(self, message: str, *, namespace: str, key: str, operation: str):
        super().__init__(message)
        self.namespace = namespace
        self.key = key
        self.operation = operation
