from stockwatch.models.target import CheckRecord, Target

__all__ = [
    "Target",
    "CheckRecord",
]
