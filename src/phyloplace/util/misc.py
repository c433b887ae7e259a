"""Small helpers shared across phyloplace."""


def get_object_provenance(obj) -> str:
    """the fully qualified name of obj's class, or of obj if it is a class

    Builtin types are given by their name alone.
    """
    klass = obj if isinstance(obj, type) else type(obj)
    module = klass.__module__
    if module in (None, "builtins"):
        return klass.__name__
    return f"{module}.{klass.__name__}"


def in_jupyter() -> bool:
    """whether code is being executed within a jupyter notebook"""
    try:
        shell = get_ipython()  # noqa: F821
    except NameError:
        return False
    return shell is not None
