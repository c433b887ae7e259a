"""Named constructors for the pre-defined nucleotide substitution models.

A model is selected by its abbreviation, which is the name of the
registered constructor, e.g. ``get_model("HKY85", kappa=4.0)``.
"""

from phyloplace.evolve import substitution_model

models = []
_constructors = {}


def register_model(func):
    """decorator adding func to the models, keyed by its name"""
    abbrev = func.__name__
    if abbrev in _constructors:
        raise ValueError(f"model {abbrev!r} is already registered")
    models.append(abbrev)
    _constructors[abbrev] = func
    return func


@register_model
def JC69(**kw):
    """Jukes and Cantor 1969, equal rates and equal frequencies"""
    return substitution_model.JC69(**kw)


@register_model
def K80(**kw):
    """Kimura 1980, separate transition and transversion rates"""
    return substitution_model.K80(**kw)


@register_model
def F81(**kw):
    """Felsenstein 1981, equal rates with unequal frequencies"""
    return substitution_model.F81(**kw)


@register_model
def HKY85(**kw):
    """Hasegawa, Kishino and Yano 1985, K80 with unequal frequencies"""
    return substitution_model.HKY85(**kw)


@register_model
def GTR(**kw):
    """general time reversible, six exchangeabilities"""
    return substitution_model.GTR(**kw)


def get_model(name, **kw):
    """returns a new instance of the named model

    Parameters
    ----------
    name
        a case sensitive abbreviation from ``models``, or a model instance,
        for which an independent copy is returned
    kw
        model parameters, e.g. motif_probs, kappa, rates
    """
    if isinstance(name, substitution_model._SubstitutionModel):
        return name.clone()
    try:
        constructor = _constructors[name]
    except (KeyError, TypeError):
        msg = f"unknown model {name!r}, choose from {models} (case sensitive)"
        raise ValueError(msg) from None
    return constructor(**kw)


def available_models():
    """returns [abbreviation, description] for each pre-defined model"""
    return [
        [abbrev, " ".join((_constructors[abbrev].__doc__ or "").split())]
        for abbrev in models
    ]
