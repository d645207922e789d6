""" Conditional merge of fresh source data into stored objects """

from podsync.utils import to_maxlength


def is_empty(value):
    """ Values that carry no information and never overwrite stored data

    >>> [is_empty(v) for v in (None, '', '  ', [], 0, False)]
    [True, True, True, True, False, False]
    """
    if value is None:
        return True

    if isinstance(value, str):
        return not value.strip()

    if isinstance(value, (list, tuple, dict, set)):
        return not value

    return False


def merge_fields(instance, values):
    """ Sets the fields of ``instance`` for which ``values`` has data

    Each field is handled on its own: it is replaced if a new value is
    present, and left untouched otherwise. Strings are cut to the field's
    max_length. The instance is not saved; returns the names of the fields
    that have changed. """

    changed = []
    model = type(instance)

    for field, value in values.items():
        if is_empty(value):
            continue

        if isinstance(value, str):
            value = value.strip()
            if model._meta.get_field(field).max_length:
                value = to_maxlength(model, field, value)

        if getattr(instance, field) != value:
            setattr(instance, field, value)
            changed.append(field)

    return changed
