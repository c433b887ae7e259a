__all__ = ["alphabet", "tree"]
