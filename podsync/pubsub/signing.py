""" HMAC signatures of WebSub notifications

A hub that knows the subscription's secret signs the body of every
notification and sends the signature as ``X-Hub-Signature: sha1=<hexdigest>``.

>>> header = sign('secret', b'<rss/>')
>>> header.startswith('sha1=')
True
>>> verify_signature('secret', b'<rss/>', header)
True
>>> verify_signature('wrong', b'<rss/>', header)
False
"""

import hmac
import hashlib


ALGORITHMS = {
    'sha1': hashlib.sha1,
    'sha256': hashlib.sha256,
    'sha384': hashlib.sha384,
    'sha512': hashlib.sha512,
}


class InvalidSignature(ValueError):
    """ The signature header is malformed or uses an unknown algorithm """


def _to_bytes(value):
    if isinstance(value, str):
        return value.encode('utf-8')
    return value


def sign(secret, body, algorithm='sha1'):
    """ Returns the signature header value for ``body`` """
    try:
        digestmod = ALGORITHMS[algorithm]
    except KeyError:
        raise InvalidSignature('unsupported algorithm %r' % algorithm)

    digest = hmac.new(_to_bytes(secret), _to_bytes(body), digestmod)
    return '{algo}={digest}'.format(algo=algorithm, digest=digest.hexdigest())


def parse_signature(header):
    """ Splits a signature header into algorithm and hexdigest

    >>> parse_signature('sha1=abc123')
    ('sha1', 'abc123')

    >>> parse_signature('SHA256=ABC')
    ('sha256', 'abc')

    >>> parse_signature('md5=abc')
    Traceback (most recent call last):
    ...
    podsync.pubsub.signing.InvalidSignature: unsupported algorithm 'md5'
    """
    algorithm, sep, digest = (header or '').strip().partition('=')

    if not sep or not digest:
        raise InvalidSignature('malformed signature %r' % header)

    algorithm = algorithm.strip().lower()
    if algorithm not in ALGORITHMS:
        raise InvalidSignature('unsupported algorithm %r' % algorithm)

    return algorithm, digest.strip().lower()


def verify_signature(secret, body, header):
    """ Checks a signature header against the body

    Returns False for wrong signatures; raises InvalidSignature if the header
    can not be parsed. """
    algorithm, digest = parse_signature(header)
    expected = sign(secret, body, algorithm).partition('=')[2]
    return hmac.compare_digest(expected.encode('ascii'), digest.encode('ascii', 'replace'))
