# -*- coding: utf-8 -*-

import time
import secrets

from django.urls import reverse

import logging

logger = logging.getLogger(__name__)


def parse_time(value):
    """
    >>> parse_time(10)
    10

    >>> parse_time('05:10') #5*60+10
    310

    >>> parse_time('1:05:10') #60*60+5*60+10
    3910
    """
    if value is None:
        raise ValueError("None value in parse_time")

    if isinstance(value, int):
        # Don't need to parse already-converted time value
        return value

    if value == "":
        raise ValueError("Empty valueing in parse_time")

    for format in ("%H:%M:%S", "%M:%S"):
        try:
            t = time.strptime(value, format)
            return t.tm_hour * 60 * 60 + t.tm_min * 60 + t.tm_sec
        except ValueError:
            continue

    return int(value)


def parse_duration(value):
    """Duration of an episode in seconds, or None if it can't be parsed

    >>> parse_duration('1:05:10')
    3910

    >>> parse_duration('61.5')
    61

    >>> parse_duration('unknown') is None
    True

    >>> parse_duration(None) is None
    True
    """
    if not value:
        return None

    value = str(value).strip()
    try:
        return parse_time(value)
    except ValueError:
        pass

    try:
        return int(float(value))
    except ValueError:
        return None


def random_token(nbytes=32):
    """Returns a random hex token with ``nbytes`` bytes of randomness

    >>> len(random_token())
    64
    """
    return secrets.token_hex(nbytes)


def to_maxlength(cls, field, val):
    """Cut val to the maximum length of cls's field"""
    if val is None:
        return None

    max_length = cls._meta.get_field(field).max_length
    orig_length = len(val)
    if orig_length > max_length:
        val = val[:max_length]
        logger.warning(
            "%s.%s length reduced from %d to %d",
            cls.__name__,
            field,
            orig_length,
            max_length,
        )

    return val


def edit_link(obj):
    """Return the link to the Django Admin Edit page"""
    return reverse(
        "admin:%s_%s_change" % (obj._meta.app_label, obj._meta.model_name),
        args=(obj.pk,),
    )
