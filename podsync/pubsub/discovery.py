""" Discovery of the WebSub hub of a feed

Discovery is best-effort; every failure means "no hub", and the feed is
then only polled. """

import re

import requests
import feedparser
from django.conf import settings

import logging

logger = logging.getLogger(__name__)


# <link rel="hub" href="..."> with the attributes in either order
HUB_LINK_PATTERNS = [
    re.compile(r"""<(?:atom:)?link[^>]*rel=["']hub["'][^>]*href=["']([^"']+)["'][^>]*>""", re.I),
    re.compile(r"""<(?:atom:)?link[^>]*href=["']([^"']+)["'][^>]*rel=["']hub["'][^>]*>""", re.I),
]


def _session(session):
    if session is not None:
        return session

    session = requests.Session()
    session.headers['User-Agent'] = settings.USER_AGENT
    return session


def hub_from_headers(response):
    """ The hub from a ``Link: <...>; rel="hub"`` response header """
    # requests only keeps one link per rel, so we parse the header ourselves
    header = response.headers.get('Link', '')
    if not header:
        return None

    for link in requests.utils.parse_header_links(header):
        rels = link.get('rel', '').split()
        if 'hub' in rels and link.get('url'):
            return link['url']

    return None


def hub_from_document(content, parsed=None):
    """ The hub advertised in the body of a feed """
    if parsed is None:
        parsed = feedparser.parse(content)

    for link in parsed.get('feed', {}).get('links', []):
        if link.get('rel') == 'hub' and link.get('href'):
            return link['href']

    if isinstance(content, bytes):
        content = content.decode('utf-8', 'replace')

    for pattern in HUB_LINK_PATTERNS:
        match = pattern.search(content or '')
        if match:
            return match.group(1)

    return None


def hub_from_response(response, parsed=None):
    """ Looks for a hub in a response that has already been fetched

    ``parsed`` can be passed if the body has already been parsed by
    feedparser. """
    return hub_from_headers(response) or \
        hub_from_document(response.content, parsed)


def probe_hubs(hubs, session=None, timeout=None):
    """ Returns the first of the hubs that is alive """
    session = _session(session)
    timeout = timeout or settings.PUBSUB_REQUEST_TIMEOUT

    for hub in hubs:
        try:
            resp = session.head(hub, timeout=timeout, allow_redirects=True)
        except requests.exceptions.RequestException as ex:
            logger.info('Hub %s is not reachable: %s', hub, ex)
            continue

        if resp.status_code < 500:
            return hub

        logger.info('Hub %s responded with %d', hub, resp.status_code)

    return None


def discover_hub(feed_url, session=None, fallback_hubs=None):
    """ Returns the URL of the hub for the feed, or None """
    session = _session(session)

    if fallback_hubs is None:
        fallback_hubs = settings.PUBSUB_FALLBACK_HUBS

    try:
        resp = session.get(feed_url, timeout=settings.FEED_FETCH_TIMEOUT)
        resp.raise_for_status()

    except requests.exceptions.RequestException as ex:
        logger.info('Could not fetch %s for hub discovery: %s', feed_url, ex)
        return None

    hub = hub_from_response(resp)
    if hub:
        logger.info('Found hub %s for %s', hub, feed_url)
        return hub

    hub = probe_hubs(fallback_hubs, session)
    if hub:
        logger.info('Using fallback hub %s for %s', hub, feed_url)

    return hub
