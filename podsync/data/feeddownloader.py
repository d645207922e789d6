#!/usr/bin/python
# -*- coding: utf-8 -*-

from itertools import islice

import requests

from django.db import transaction, IntegrityError
from django.db.models import Max
from django.conf import settings
from django.utils import timezone

from podsync.utils import to_maxlength
from podsync.podcasts.models import Podcast, Episode
from podsync.pubsub.models import HubSubscription
from podsync.pubsub.discovery import hub_from_headers
from podsync.pubsub.utils import HubSubscriber
from podsync.data.feedparse import parse_feed, FeedParseError
from podsync.data.merge import merge_fields
from podsync.data.models import FeedSyncResult

import logging

logger = logging.getLogger(__name__)


# feed-level fields that are taken from the parsed feed
PODCAST_FIELDS = {
    'title': 'title',
    'subtitle': 'subtitle',
    'description': 'description',
    'link': 'link',
    'language': 'language',
    'author': 'author',
    'logo_url': 'logo',
    'explicit': 'explicit',
    'hub': 'hub',
}

EPISODE_FIELDS = {
    'title': 'title',
    'subtitle': 'subtitle',
    'content': 'content',
    'link': 'link',
    'released': 'released',
    'duration': 'duration',
    'explicit': 'explicit',
    'image_url': 'image',
    'mimetype': 'mimetype',
    'filesize': 'filesize',
}


def pick(parsed, fields):
    return {field: parsed.get(key) for field, key in fields.items()}


def stored_keys(item):
    """ The item with its GUID and enclosure URL as they are stored """
    keys = {}
    for field in ('guid', 'enclosure_url'):
        value = item.get(field)
        if isinstance(value, str):
            keys[field] = to_maxlength(Episode, field, value.strip()) or None
    return dict(item, **keys)


def identity(item):
    """ The key that identifies a feed item within its podcast """
    return item.get('guid') or item.get('enclosure_url')


def update_podcasts(queue, trigger=FeedSyncResult.PULL):
    """ Fetch data for the URLs supplied as the queue iterable """

    for n, podcast_url in enumerate(queue, 1):
        logger.info('Update %d - %s', n, podcast_url)
        if not podcast_url:
            logger.warning('Podcast URL empty, skipping')
            continue

        try:
            synchronizer = FeedSynchronizer(podcast_url, trigger=trigger)
            result = synchronizer.sync()

        except Exception:
            logger.exception('Error while updating podcast "%s"', podcast_url)
            raise

        if result.podcast is None:
            logger.info('No podcast created for %s: %s', podcast_url,
                        result.error_message)
            continue

        yield result.podcast


class FeedSynchronizer(object):
    """ Reconciles the feed at ``topic`` into the stored podcast and episodes

    Only the difference to the stored state is written. Running a
    synchronization twice for the same document changes nothing. """

    def __init__(self, topic, session=None, now=None,
                 trigger=FeedSyncResult.PULL, subscriber=None):
        if session is None:
            session = requests.Session()
            session.headers['User-Agent'] = settings.USER_AGENT

        self.topic = topic
        self.session = session
        self.now = now or timezone.now
        self.trigger = trigger
        self.subscriber = subscriber
        self.response = None

    def sync(self, document=None):
        """ Synchronize the feed

        ``document`` is a feed that has already been received, eg with a
        push notification. If it can not be parsed, the feed is fetched. """

        with FeedSyncResult(podcast_url=self.topic, trigger=self.trigger) as res:

            try:
                parsed = self.parse_feed(document)

            except FeedParseError as ex:
                logger.warning('Error while fetching/parsing feed %s: %s',
                               self.topic, ex)
                self._mark_parse_error(res, ex)
                return res

            podcast, created = Podcast.objects.get_or_create_for_url(self.topic)
            res.podcast = podcast
            res.podcast_created = created

            build_date = parsed.get('build_date')

            if self._is_outdated(podcast, build_date):
                logger.info('Feed %s has not changed since %s, skipping',
                            self.topic, podcast.last_build_date)
                res.status = FeedSyncResult.SKIPPED
                # record the check without touching the feed's data
                Podcast.objects.filter(pk=podcast.pk).update(last_update=self.now())
                return res

            merge_fields(podcast, pick(parsed, PODCAST_FIELDS))

            candidates = self.candidates(podcast, parsed.get('episodes', []))
            self.update_episodes(podcast, candidates, res)

            self._record_state(podcast, build_date)

        self._subscribe(podcast, parsed)
        return res

    def parse_feed(self, document=None):
        if document:
            try:
                return parse_feed(document)

            except FeedParseError as ex:
                logger.info('Received document for %s is not a feed (%s), '
                            'fetching it', self.topic, ex)

        return parse_feed(self._fetch_feed())

    def _fetch_feed(self):
        try:
            resp = self.session.get(self.topic,
                                    timeout=settings.FEED_FETCH_TIMEOUT)
            resp.raise_for_status()

        except requests.exceptions.RequestException as ex:
            raise FeedParseError('could not fetch feed: %s' % ex) from ex

        self.response = resp
        return resp.content

    def _is_outdated(self, podcast, build_date):
        """ The feed is outdated if it is not strictly newer than the last
        synchronized one """

        if build_date is None or podcast.last_build_date is None:
            return False

        return build_date <= podcast.last_build_date

    def candidates(self, podcast, parsed_episodes):
        """ The feed items that need to be written """

        # episodes are looked up by the keys they are stored with
        items = [stored_keys(item) for item in
                 islice(parsed_episodes, 0, settings.MAX_EPISODES_UPDATE)]
        logger.info('Parsed %d (%d) episodes', len(parsed_episodes), len(items))

        with_enclosure = [item for item in items if item.get('enclosure_url')]
        if len(with_enclosure) < len(items):
            logger.info('Skipping %d episodes for missing URL',
                        len(items) - len(with_enclosure))

        items = self._drop_known_old(podcast, with_enclosure)

        unique = {}
        for item in items:
            # the first occurrence of an identity wins
            unique.setdefault(identity(item), item)

        return list(unique.values())

    def _drop_known_old(self, podcast, items):
        """ Drops items that are not newer than the latest stored episode

        Only items that are already stored are dropped; items without a
        release date are kept. """

        latest = podcast.latest_episode_timestamp
        if latest is None:
            return items

        old = [item for item in items
               if item.get('released') and item['released'] <= latest]
        if not old:
            return items

        episodes = Episode.objects.filter(podcast=podcast)

        guids = [item['guid'] for item in old if item.get('guid')]
        known_guids = set(episodes.filter(guid__in=guids)
                                  .values_list('guid', flat=True))

        urls = [item['enclosure_url'] for item in old if not item.get('guid')]
        known_urls = set(episodes.filter(enclosure_url__in=urls)
                                 .values_list('enclosure_url', flat=True))

        def is_known(item):
            if item.get('guid'):
                return item['guid'] in known_guids
            return item['enclosure_url'] in known_urls

        dropped = {id(item) for item in old if is_known(item)}
        logger.info('Dropping %d episodes that are already stored', len(dropped))

        return [item for item in items if id(item) not in dropped]

    def update_episodes(self, podcast, items, res):
        # GUIDs are matched first, so that an item that has gained a GUID
        # takes over the row that was stored by its enclosure URL
        with_guid = [item for item in items if item.get('guid')]
        without_guid = [item for item in items if not item.get('guid')]

        logger.info('Updating %d episodes (%d without GUID)',
                    len(items), len(without_guid))

        for item in with_guid + without_guid:
            self.update_episode(podcast, item, res)

    def find_episode(self, podcast, item):
        episodes = Episode.objects.filter(podcast=podcast)
        url = item['enclosure_url']

        if item.get('guid'):
            episode = episodes.with_guid(item['guid']).first()
            if episode is None:
                episode = episodes.filter(guid__isnull=True).with_enclosure(url).first()
            return episode

        return episodes.with_enclosure(url).first()

    def update_episode(self, podcast, item, res):
        """ Inserts or updates the episode for a feed item """

        values = pick(item, EPISODE_FIELDS)
        values['guid'] = item.get('guid')
        values['enclosure_url'] = item['enclosure_url']

        episode = self.find_episode(podcast, item)
        created = episode is None

        if created:
            episode = Episode(podcast=podcast)

        changed = merge_fields(episode, values)

        if not created and not changed:
            return

        episode.last_update = self.now()

        try:
            with transaction.atomic():
                episode.save()

        except IntegrityError as ie:
            if not created:
                raise

            # a concurrent sync may have stored the episode in the meantime
            episode = self.find_episode(podcast, item)
            if episode is None:
                # the enclosure URL belongs to an episode with another GUID
                logger.warning('Could not store episode %s of %s: %s',
                               identity(item), podcast.url, ie)
                return

            created = False
            if not merge_fields(episode, values):
                return

            episode.last_update = self.now()
            episode.save()

        if created:
            res.episodes_added += 1
        else:
            res.episodes_updated += 1

    def _record_state(self, podcast, build_date):
        episodes = Episode.objects.filter(podcast=podcast)

        if build_date is not None:
            podcast.last_build_date = build_date

        latest = episodes.aggregate(latest=Max('released'))['latest']
        if latest is not None:
            podcast.latest_episode_timestamp = latest

        podcast.episode_count = episodes.count()
        podcast.has_parse_errors = False

        # The podcast is always saved (not just when there are changes) because
        # we need to record the last update
        logger.info('Saving podcast.')
        podcast.last_update = self.now()
        podcast.save()

    def _mark_parse_error(self, res, ex):
        res.status = FeedSyncResult.PARSE_ERROR
        res.error_message = str(ex)

        podcast = Podcast.objects.filter(url=self.topic).first()
        if podcast is None:
            # if we fail to parse the URL, we don't even create the
            # podcast object
            return

        logger.info('marking podcast as having parse errors: %s', ex)
        res.podcast = podcast
        podcast.has_parse_errors = True
        podcast.last_update = self.now()
        podcast.save()

    def _subscribe(self, podcast, parsed):
        """ Subscribes at the hub of a polled feed that is not pushed yet """
        if self.trigger == FeedSyncResult.PUSH:
            return

        if HubSubscription.objects.active_for_topic(self.topic, self.now()):
            return

        hub = parsed.get('hub')
        if not hub and self.response is not None:
            hub = hub_from_headers(self.response)

        if not hub:
            return

        if hub != podcast.hub:
            podcast.hub = hub
            podcast.save(update_fields=['hub'])

        subscriber = self.subscriber or HubSubscriber(session=self.session)
        subscriber.subscribe(self.topic, hub, podcast=podcast)
