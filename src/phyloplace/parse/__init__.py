__all__ = ["binary_state"]
