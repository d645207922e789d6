import doctest
import unittest
from io import StringIO
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

import responses

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from podsync.podcasts.models import Podcast, Episode
from podsync.pubsub.models import HubSubscription, CallbackLog
from podsync.data import merge, tasks
from podsync.data.merge import merge_fields
from podsync.data.feedparse import parse_feed, FeedParseError, NoEpisodesException
from podsync.data.feeddownloader import FeedSynchronizer, update_podcasts
from podsync.data.models import FeedSyncResult


TOPIC = 'https://example.com/feed.xml'
HUB = 'https://hub.example.com/'


def item(title, guid=None, url=None, date=None, duration=None):
    parts = ['<item>', '<title>{}</title>'.format(title)]
    if guid:
        parts.append('<guid isPermaLink="false">{}</guid>'.format(guid))
    if date:
        parts.append('<pubDate>{}</pubDate>'.format(date))
    if url:
        parts.append('<enclosure url="{}" type="audio/mpeg" length="1000"/>'.format(url))
    if duration:
        parts.append('<itunes:duration>{}</itunes:duration>'.format(duration))
    parts.append('</item>')
    return ''.join(parts)


def rss(*items, title='Example Podcast', build_date=None, description='An example',
        hub=None, image=None):
    head = ['<title>{}</title>'.format(title), '<link>https://example.com/</link>']
    if description:
        head.append('<description>{}</description>'.format(description))
    if build_date:
        head.append('<lastBuildDate>{}</lastBuildDate>'.format(build_date))
    if hub:
        head.append('<atom:link rel="hub" href="{}"/>'.format(hub))
    if image:
        head.append('<itunes:image href="{}"/>'.format(image))

    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom" '
        'xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        '<channel>{}{}</channel></rss>'
    ).format(''.join(head), ''.join(items)).encode('utf-8')


MON = 'Mon, 06 Jan 2025 10:00:00 +0000'
TUE = 'Tue, 07 Jan 2025 10:00:00 +0000'
WED = 'Wed, 08 Jan 2025 10:00:00 +0000'


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


class MergeTests(TestCase):
    """ Test the conditional merge of new values """

    def test_empty_values_do_not_overwrite(self):
        podcast = Podcast(url=TOPIC, title='Old', description='Old description',
                          optimized_logo_url='https://cdn.example.com/logo.jpg')

        changed = merge_fields(podcast, {
            'title': 'New',
            'description': '',
            'language': None,
            'optimized_logo_url': None,
        })

        self.assertEqual(changed, ['title'])
        self.assertEqual(podcast.title, 'New')
        self.assertEqual(podcast.description, 'Old description')
        self.assertEqual(podcast.optimized_logo_url, 'https://cdn.example.com/logo.jpg')

    def test_unchanged(self):
        podcast = Podcast(url=TOPIC, title='Same')
        self.assertEqual(merge_fields(podcast, {'title': 'Same'}), [])

    def test_false_is_a_value(self):
        podcast = Podcast(url=TOPIC, explicit=True)
        self.assertEqual(merge_fields(podcast, {'explicit': False}), ['explicit'])
        self.assertFalse(podcast.explicit)

    def test_max_length(self):
        podcast = Podcast(url=TOPIC)
        merge_fields(podcast, {'language': 'en-us-very-long-language'})
        self.assertEqual(len(podcast.language), 10)

    def test_doctests(self):
        result = doctest.testmod(merge)
        self.assertEqual(result.failed, 0)


class FeedParseTests(unittest.TestCase):
    """ Test converting feeds into dicts """

    def test_parse(self):
        parsed = parse_feed(rss(
            item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                 date=MON, duration='1:02:03'),
            item('Ep 2', url='https://example.com/2.mp3'),
            build_date=TUE, hub=HUB, image='https://example.com/logo.jpg',
        ))

        self.assertEqual(parsed['title'], 'Example Podcast')
        self.assertEqual(parsed['link'], 'https://example.com/')
        self.assertEqual(parsed['description'], 'An example')
        self.assertEqual(parsed['logo'], 'https://example.com/logo.jpg')
        self.assertEqual(parsed['hub'], HUB)
        self.assertEqual(parsed['build_date'], utc(2025, 1, 7, 10))

        first, second = parsed['episodes']
        self.assertEqual(first['guid'], 'ep-1')
        self.assertEqual(first['title'], 'Ep 1')
        self.assertEqual(first['released'], utc(2025, 1, 6, 10))
        self.assertEqual(first['duration'], 3723)
        self.assertEqual(first['enclosure_url'], 'https://example.com/1.mp3')
        self.assertEqual(first['mimetype'], 'audio/mpeg')
        self.assertEqual(first['filesize'], 1000)

        self.assertIsNone(second['guid'])
        self.assertIsNone(second['released'])

    def test_empty(self):
        with self.assertRaises(FeedParseError):
            parse_feed(b'')

    def test_not_a_feed(self):
        with self.assertRaises(FeedParseError):
            parse_feed(b'this is not a feed')

    def test_no_episodes(self):
        with self.assertRaises(NoEpisodesException):
            parse_feed(rss(build_date=MON))


class SynchronizerTests(TestCase):
    """ Test reconciling feeds into podcasts and episodes """

    def sync(self, document, **kwargs):
        kwargs.setdefault('trigger', FeedSyncResult.PUSH)
        return FeedSynchronizer(TOPIC, **kwargs).sync(document)

    def test_pull(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                            date=MON), build_date=MON)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            res = FeedSynchronizer(TOPIC).sync()

        self.assertEqual(res.status, FeedSyncResult.UPDATED)
        self.assertTrue(res.successful)
        self.assertTrue(res.podcast_created)
        self.assertEqual(res.episodes_added, 1)

        podcast = Podcast.objects.get(url=TOPIC)
        self.assertEqual(podcast.title, 'Example Podcast')
        self.assertEqual(podcast.episode_count, 1)
        self.assertEqual(podcast.last_build_date, utc(2025, 1, 6, 10))
        self.assertEqual(podcast.latest_episode_timestamp, utc(2025, 1, 6, 10))
        self.assertIsNotNone(podcast.last_update)
        self.assertFalse(podcast.has_parse_errors)

        self.assertEqual(FeedSyncResult.objects.get().podcast, podcast)

    def test_monotonic_guard(self):
        first = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                         date=MON), build_date=TUE)
        self.sync(first)
        podcast = Podcast.objects.get(url=TOPIC)
        episodes = list(Episode.objects.values())

        for build_date in (TUE, MON):
            older = rss(
                item('Ep 1 renamed', guid='ep-1', url='https://example.com/1.mp3',
                     date=MON),
                item('Ep 2', guid='ep-2', url='https://example.com/2.mp3', date=TUE),
                title='Renamed', build_date=build_date,
            )
            res = self.sync(older)
            self.assertEqual(res.status, FeedSyncResult.SKIPPED)
            self.assertEqual(res.episodes_added, 0)

        stored = Podcast.objects.get(url=TOPIC)
        self.assertEqual(stored.title, 'Example Podcast')

        # only the time of the last check is recorded
        for field in Podcast._meta.concrete_fields:
            if field.name == 'last_update':
                self.assertGreaterEqual(stored.last_update, podcast.last_update)
                continue

            self.assertEqual(getattr(stored, field.attname),
                             getattr(podcast, field.attname), field.name)

        self.assertEqual(list(Episode.objects.values()), episodes)

    def test_newer_build_is_applied(self):
        self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                           date=MON), build_date=MON))

        res = self.sync(rss(
            item('Ep 2', guid='ep-2', url='https://example.com/2.mp3', date=TUE),
            item('Ep 1', guid='ep-1', url='https://example.com/1.mp3', date=MON),
            title='Renamed', build_date=TUE,
        ))

        self.assertEqual(res.status, FeedSyncResult.UPDATED)
        self.assertEqual(res.episodes_added, 1)

        podcast = Podcast.objects.get(url=TOPIC)
        self.assertEqual(podcast.title, 'Renamed')
        self.assertEqual(podcast.episode_count, 2)
        self.assertEqual(podcast.last_build_date, utc(2025, 1, 7, 10))
        self.assertEqual(podcast.latest_episode_timestamp, utc(2025, 1, 7, 10))

    def test_undated_feed_is_synced_again(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'))
        self.sync(document)
        res = self.sync(document)

        self.assertEqual(res.status, FeedSyncResult.UPDATED)
        self.assertEqual(res.episodes_added, 0)
        self.assertEqual(res.episodes_updated, 0)
        self.assertEqual(Episode.objects.count(), 1)

    def test_guid_dedup(self):
        res = self.sync(rss(
            item('First', guid='same', url='https://example.com/1.mp3'),
            item('Second', guid='same', url='https://example.com/2.mp3'),
        ))

        self.assertEqual(res.episodes_added, 1)
        episode = Episode.objects.get()
        self.assertEqual(episode.title, 'First')
        self.assertEqual(episode.enclosure_url, 'https://example.com/1.mp3')

    def test_enclosure_dedup(self):
        res = self.sync(rss(
            item('First', url='https://example.com/1.mp3'),
            item('Second', url='https://example.com/1.mp3'),
        ))

        self.assertEqual(res.episodes_added, 1)
        episode = Episode.objects.get()
        self.assertEqual(episode.title, 'First')
        self.assertIsNone(episode.guid)

    def test_missing_enclosure(self):
        res = self.sync(rss(
            item('No media', guid='text-only'),
            item('Media', guid='ep-1', url='https://example.com/1.mp3'),
        ))

        self.assertEqual(res.episodes_added, 1)
        self.assertEqual(Episode.objects.get().guid, 'ep-1')

    def test_guid_adopts_enclosure_row(self):
        self.sync(rss(item('Ep 1', url='https://example.com/1.mp3', date=MON),
                      build_date=MON))
        episode = Episode.objects.get()
        self.assertIsNone(episode.guid)

        res = self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                                 date=MON), build_date=TUE))

        self.assertEqual(res.episodes_added, 0)
        stored = Episode.objects.get()
        self.assertEqual(stored.pk, episode.pk)
        self.assertEqual(stored.guid, 'ep-1')

    def test_episode_update(self):
        self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3',
                           date=MON), build_date=MON))

        res = self.sync(rss(item('Ep 1 (fixed)', guid='ep-1',
                                 url='https://example.com/1-fixed.mp3', date=TUE),
                            build_date=TUE))

        self.assertEqual(res.episodes_added, 0)
        self.assertEqual(res.episodes_updated, 1)

        episode = Episode.objects.get()
        self.assertEqual(episode.title, 'Ep 1 (fixed)')
        self.assertEqual(episode.enclosure_url, 'https://example.com/1-fixed.mp3')

    def test_long_guid(self):
        guid = 'g' * 3000
        self.sync(rss(item('Ep 1', guid=guid, url='https://example.com/1.mp3')))

        res = self.sync(rss(item('Ep 1 (fixed)', guid=guid,
                                 url='https://example.com/1.mp3')))

        self.assertEqual(res.episodes_added, 0)
        self.assertEqual(res.episodes_updated, 1)

        episode = Episode.objects.get()
        self.assertEqual(episode.guid, guid[:2048])
        self.assertEqual(episode.title, 'Ep 1 (fixed)')

    def test_known_old_items_are_dropped(self):
        self.sync(rss(item('Ep 2', guid='ep-2', url='https://example.com/2.mp3',
                           date=TUE), build_date=TUE))

        res = self.sync(rss(
            # stored already and not newer than the latest episode
            item('Ep 2 renamed', guid='ep-2', url='https://example.com/2.mp3',
                 date=TUE),
            # older, but not stored yet
            item('Ep 1', guid='ep-1', url='https://example.com/1.mp3', date=MON),
            # no date
            item('Bonus', guid='bonus', url='https://example.com/bonus.mp3'),
            build_date=WED,
        ))

        self.assertEqual(res.episodes_added, 2)
        self.assertEqual(res.episodes_updated, 0)
        self.assertEqual(Episode.objects.get(guid='ep-2').title, 'Ep 2')
        self.assertEqual(Episode.objects.count(), 3)
        self.assertEqual(Podcast.objects.get(url=TOPIC).episode_count, 3)

    def test_enrichment_is_preserved(self):
        Podcast.objects.create(url=TOPIC, title='Old', description='Curated',
                               logo_url='https://example.com/old.jpg',
                               optimized_logo_url='https://cdn.example.com/logo.jpg')

        self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'),
                      description=None, image='https://example.com/new.jpg'))

        podcast = Podcast.objects.get(url=TOPIC)
        self.assertEqual(podcast.title, 'Example Podcast')
        self.assertEqual(podcast.description, 'Curated')
        self.assertEqual(podcast.logo_url, 'https://example.com/new.jpg')
        self.assertEqual(podcast.optimized_logo_url, 'https://cdn.example.com/logo.jpg')

    def test_parse_error(self):
        podcast = Podcast.objects.create(url=TOPIC, title='Example')
        modified = podcast.modified

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=500)
            res = FeedSynchronizer(TOPIC).sync()

        self.assertEqual(res.status, FeedSyncResult.PARSE_ERROR)
        self.assertTrue(res.successful)
        self.assertTrue(res.error_message)

        stored = Podcast.objects.get(url=TOPIC)
        self.assertTrue(stored.has_parse_errors)
        self.assertGreater(stored.modified, modified)
        self.assertIsNotNone(stored.last_update)

        # the next successful sync clears the flag
        self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3')))
        self.assertFalse(Podcast.objects.get(url=TOPIC).has_parse_errors)

    def test_parse_error_unknown_podcast(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body='<html></html>')
            res = FeedSynchronizer(TOPIC).sync()

        self.assertEqual(res.status, FeedSyncResult.PARSE_ERROR)
        self.assertIsNone(res.podcast)
        self.assertFalse(Podcast.objects.exists())

    def test_storage_error_propagates(self):
        with mock.patch('podsync.data.feeddownloader.FeedSynchronizer._record_state',
                        side_effect=RuntimeError('database is gone')):
            with self.assertRaises(RuntimeError):
                self.sync(rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3')))

        res = FeedSyncResult.objects.get()
        self.assertFalse(res.successful)
        self.assertEqual(res.status, FeedSyncResult.ERROR)

    def test_pull_subscribes_at_hub(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'),
                       hub=HUB)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            rsps.add(responses.POST, HUB, status=202)
            FeedSynchronizer(TOPIC).sync()

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)
        self.assertEqual(subscription.podcast, Podcast.objects.get(url=TOPIC))
        self.assertEqual(Podcast.objects.get(url=TOPIC).hub, HUB)

    def test_pull_keeps_active_subscription(self):
        HubSubscription.objects.create(
            topic_url=TOPIC, hub_url=HUB, secret='s3cret',
            status=HubSubscription.ACTIVE, requested_lease_seconds=86400,
            lease_seconds=86400, expires_at=timezone.now() + timedelta(hours=10))

        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'),
                       hub=HUB)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            FeedSynchronizer(TOPIC).sync()
            self.assertEqual(len(rsps.calls), 1)

    def test_update_podcasts(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'))
        other = 'https://example.com/broken.xml'

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            rsps.add(responses.GET, other, status=404)
            podcasts = list(update_podcasts([TOPIC, '', other]))

        self.assertEqual(podcasts, [Podcast.objects.get(url=TOPIC)])


class SchedulerTests(TestCase):
    """ Test the reconciliation of subscriptions and stale feeds """

    def setUp(self):
        cache.clear()
        self.now = timezone.now()

    def podcast(self, url, hours_ago=None, **kwargs):
        last_update = None
        if hours_ago is not None:
            last_update = self.now - timedelta(hours=hours_ago)
        return Podcast.objects.create(url=url, last_update=last_update, **kwargs)

    def notification(self, url, hours_ago, status=200):
        log = CallbackLog(type=CallbackLog.NOTIFICATION, topic_url=url,
                          method='POST', response_status=status,
                          created=self.now - timedelta(hours=hours_ago))
        log.save()

    def test_stale_podcasts(self):
        never = self.podcast('https://example.com/never.xml')
        stale = self.podcast('https://example.com/stale.xml', hours_ago=30)
        self.podcast('https://example.com/fresh.xml', hours_ago=2)
        self.podcast('https://example.com/dead.xml', hours_ago=30, is_dead=True)

        pushed = self.podcast('https://example.com/pushed.xml', hours_ago=30)
        self.notification(pushed.url, hours_ago=1)

        rejected = self.podcast('https://example.com/rejected.xml', hours_ago=40)
        self.notification(rejected.url, hours_ago=1, status=403)

        podcasts = list(tasks.stale_podcasts(self.now))
        self.assertEqual(podcasts, [never, rejected, stale])

    def test_schedule_stale(self):
        self.podcast('https://example.com/a.xml', hours_ago=30)
        self.podcast('https://example.com/b.xml', hours_ago=50)
        self.podcast('https://example.com/c.xml', hours_ago=40)

        with mock.patch.object(tasks.update_podcasts, 'delay') as delay:
            scheduled = tasks.schedule_stale(self.now, max_updates=2)

        self.assertEqual(scheduled, 2)
        self.assertEqual(delay.call_args_list, [
            mock.call(['https://example.com/b.xml']),
            mock.call(['https://example.com/c.xml']),
        ])

    def test_reconcile(self):
        HubSubscription.objects.create(
            topic_url=TOPIC, hub_url=HUB, secret='s3cret',
            status=HubSubscription.ACTIVE, requested_lease_seconds=86400,
            lease_seconds=86400, expires_at=self.now - timedelta(minutes=5))

        summary = tasks.reconcile.delay().get()

        self.assertEqual(summary, {'expired': 1, 'renewed': 0, 'scheduled': 0})
        self.assertEqual(HubSubscription.objects.get().status,
                         HubSubscription.EXPIRED)
        self.assertIsNone(cache.get(tasks.RECONCILE_LOCK))

    def test_reconcile_skipped_while_locked(self):
        cache.add(tasks.RECONCILE_LOCK, 'running')

        with mock.patch('podsync.pubsub.tasks.expire') as expire:
            self.assertIsNone(tasks.reconcile())

        expire.assert_not_called()
        self.assertEqual(cache.get(tasks.RECONCILE_LOCK), 'running')

    def test_lock_outlives_interval(self):
        start = self.now.timestamp()
        clock = mock.Mock(return_value=start)
        overlapping = []

        def slow_expire(now):
            # the run takes longer than the beat interval
            clock.return_value = start + tasks.UPDATE_INTERVAL.total_seconds() + 300
            overlapping.append(tasks.reconcile())
            return 0

        with mock.patch('time.time', clock), \
                mock.patch('podsync.pubsub.tasks.expire', side_effect=slow_expire), \
                mock.patch('podsync.pubsub.tasks.renew', return_value=0), \
                mock.patch('podsync.data.tasks.schedule_stale', return_value=0):
            summary = tasks.reconcile()

        self.assertEqual(overlapping, [None])
        self.assertEqual(summary, {'expired': 0, 'renewed': 0, 'scheduled': 0})
        self.assertIsNone(cache.get(tasks.RECONCILE_LOCK))

    def test_lock_timeout_exceeds_interval(self):
        self.assertGreater(tasks.RECONCILE_LOCK_TIMEOUT, tasks.UPDATE_INTERVAL)

    def test_update_task(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'))

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            result = tasks.update_podcasts.delay([TOPIC]).get()

        self.assertEqual(result, [Podcast.objects.get(url=TOPIC).pk.hex])


class CommandTests(TestCase):
    """ Test the management commands """

    def test_feed_downloader(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'))

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            call_command('feed-downloader', TOPIC, stdout=StringIO())

        self.assertEqual(Episode.objects.count(), 1)
        self.assertEqual(FeedSyncResult.objects.get().trigger, FeedSyncResult.MANUAL)

    def test_feed_downloader_list_only(self):
        Podcast.objects.create(url=TOPIC)
        out = StringIO()

        with responses.RequestsMock():
            call_command('feed-downloader', list=True, stdout=out)

        self.assertIn(TOPIC, out.getvalue())

    def test_check_feed(self):
        document = rss(item('Ep 1', guid='ep-1', url='https://example.com/1.mp3'),
                       build_date=MON)
        out = StringIO()

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=document)
            call_command('check-feed', TOPIC, stdout=out)

        self.assertIn('has not been pushed', out.getvalue())
        self.assertFalse(Episode.objects.exists())
