from datetime import timedelta

from django.db import IntegrityError, transaction
from django.test import TestCase
from django.utils import timezone

from podsync.podcasts.models import Podcast, Episode


class PodcastTests(TestCase):
    """ Test podcasts and their episodes """

    def setUp(self):
        self.podcast = Podcast.objects.create(url='https://example.com/feed.xml',
                                              title='Example')

    def test_get_or_create_for_url(self):
        podcast, created = Podcast.objects.get_or_create_for_url(self.podcast.url)
        self.assertFalse(created)
        self.assertEqual(podcast, self.podcast)

        other, created = Podcast.objects.get_or_create_for_url(
            'https://example.com/other.xml')
        self.assertTrue(created)

    def test_logo(self):
        self.podcast.logo_url = 'https://example.com/logo.jpg'
        self.assertEqual(self.podcast.logo, 'https://example.com/logo.jpg')

        self.podcast.optimized_logo_url = 'https://cdn.example.com/logo.jpg'
        self.assertEqual(self.podcast.logo, 'https://cdn.example.com/logo.jpg')

    def test_not_updated_since(self):
        now = timezone.now()
        Podcast.objects.filter(pk=self.podcast.pk).update(
            last_update=now - timedelta(days=2))
        fresh = Podcast.objects.create(url='https://example.com/fresh.xml',
                                       last_update=now)

        stale = Podcast.objects.not_updated_since(now - timedelta(days=1))
        self.assertEqual(list(stale), [self.podcast])
        self.assertNotIn(fresh, Podcast.objects.alive().not_updated_since(now))

    def test_latest_episode(self):
        now = timezone.now()
        Episode.objects.create(podcast=self.podcast, enclosure_url='https://example.com/1.mp3',
                               released=now - timedelta(days=1))
        latest = Episode.objects.create(podcast=self.podcast,
                                        enclosure_url='https://example.com/2.mp3',
                                        released=now)
        Episode.objects.create(podcast=self.podcast, enclosure_url='https://example.com/3.mp3')

        self.assertEqual(self.podcast.latest_episode(), latest)

    def test_identity(self):
        episode = Episode(podcast=self.podcast, enclosure_url='https://example.com/1.mp3')
        self.assertEqual(episode.identity, 'https://example.com/1.mp3')

        episode.guid = 'ep-1'
        self.assertEqual(episode.identity, 'ep-1')

    def test_unique_guid(self):
        Episode.objects.create(podcast=self.podcast, guid='ep-1',
                               enclosure_url='https://example.com/1.mp3')

        with self.assertRaises(IntegrityError), transaction.atomic():
            Episode.objects.create(podcast=self.podcast, guid='ep-1',
                                   enclosure_url='https://example.com/2.mp3')

    def test_unique_enclosure(self):
        Episode.objects.create(podcast=self.podcast,
                               enclosure_url='https://example.com/1.mp3')

        with self.assertRaises(IntegrityError), transaction.atomic():
            Episode.objects.create(podcast=self.podcast,
                                   enclosure_url='https://example.com/1.mp3')

    def test_episodes_without_guid(self):
        # episodes without GUID do not collide on their GUID
        Episode.objects.create(podcast=self.podcast,
                               enclosure_url='https://example.com/1.mp3')
        Episode.objects.create(podcast=self.podcast,
                               enclosure_url='https://example.com/2.mp3')

        self.assertEqual(self.podcast.episode_set.count(), 2)
