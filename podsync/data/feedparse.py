""" Conversion of feed documents into plain dicts """

import calendar
from datetime import datetime, timezone

import feedparser

from podsync.utils import parse_duration
from podsync.pubsub.discovery import hub_from_document

import logging

logger = logging.getLogger(__name__)


class FeedParseError(Exception):
    """ A feed could not be fetched or parsed """


class NoEpisodesException(FeedParseError):
    """ raised when parsing something that doesn't contain any episodes """


def to_datetime(struct_time):
    """ Converts a UTC struct_time from feedparser into an aware datetime """
    if not struct_time:
        return None

    try:
        return datetime.fromtimestamp(calendar.timegm(struct_time), tz=timezone.utc)
    except (ValueError, OverflowError):
        return None


def to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_enclosure(entry):
    """ The first media file of an entry, as (url, mimetype, filesize) """
    for enclosure in entry.get('enclosures', []):
        url = (enclosure.get('href') or '').strip()
        if url:
            filesize = to_int(enclosure.get('length'))
            return url, enclosure.get('type', ''), filesize or None

    return None, '', None


def get_content(entry):
    for content in entry.get('content', []):
        if content.get('value'):
            return content['value']

    return entry.get('summary')


def parse_episode(entry):
    url, mimetype, filesize = get_enclosure(entry)

    image = entry.get('image') or {}

    return {
        'guid': (entry.get('id') or '').strip() or None,
        'title': entry.get('title'),
        'subtitle': entry.get('subtitle'),
        'content': get_content(entry),
        'link': entry.get('link'),
        'released': to_datetime(entry.get('published_parsed') or
                                entry.get('updated_parsed')),
        'duration': parse_duration(entry.get('itunes_duration')),
        'explicit': entry.get('itunes_explicit'),
        'image': image.get('href'),
        'enclosure_url': url,
        'mimetype': mimetype,
        'filesize': filesize,
    }


def parse_feed(content):
    """ Parses a feed document

    Returns a dict with the feed's metadata and its items under
    ``episodes``. Raises FeedParseError for documents that are not a feed,
    and NoEpisodesException for feeds without items. """

    if not content or not content.strip():
        raise FeedParseError('empty document')

    parsed = feedparser.parse(content)
    feed = parsed.get('feed', {})
    entries = parsed.get('entries', [])

    # feedparser parses pretty much everything. We reject anything that
    # doesn't look like a feed
    if parsed.get('bozo') and not entries and not feed.get('title'):
        raise FeedParseError('not a feed: %s' % parsed.get('bozo_exception'))

    if not entries:
        raise NoEpisodesException('no episodes found')

    image = feed.get('image') or {}

    return {
        'title': feed.get('title'),
        'subtitle': feed.get('subtitle'),
        'description': feed.get('summary') or feed.get('subtitle'),
        'link': feed.get('link'),
        'language': feed.get('language'),
        'author': feed.get('author'),
        'logo': image.get('href'),
        'explicit': feed.get('itunes_explicit'),
        'hub': hub_from_document(content, parsed),
        'build_date': to_datetime(feed.get('updated_parsed') or
                                  feed.get('published_parsed')),
        'episodes': [parse_episode(entry) for entry in entries],
    }
