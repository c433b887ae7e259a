__all__ = [
    "deserialise",
    "io",
    "misc",
    "progress_display",
]
