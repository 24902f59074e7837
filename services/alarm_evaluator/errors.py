class NotFound(LookupError):
    """A cache or state key is absent or expired. Callers treat this as "no data yet"."""

    def __init__(self, key: str):
        super().__init__(f"key not found: {key}")
        self.key = key


class StateMismatch(ValueError):
    """A state blob was written by a different rule variant than the one reading it."""
