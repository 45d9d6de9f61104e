# errors.py - typed failures raised by the catalog core


class CatalogError(Exception):
    pass


class ValidationError(CatalogError):
    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field.capitalize()} can't be {reason}" if reason == "blank"
                         else f"{field} is {reason}")


class NotFoundError(CatalogError):
    def __init__(self, book_id):
        self.book_id = book_id
        super().__init__(f"Book {book_id} not found")


class StorageError(CatalogError):
    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(f"Storage failure for {key}: {message}" if message else f"Storage failure for {key}")


class ConvergenceTimeout(CatalogError, TimeoutError):
    def __init__(self, attempts: int, elapsed: float):
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"Condition not met. Waited {attempts} times ({elapsed:.2f} sec)")


class WaitCancelled(CatalogError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Wait cancelled after {attempts} attempts")
