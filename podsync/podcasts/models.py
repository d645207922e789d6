from django.db import models, transaction
from django.db.models import Q

from podsync.core.models import (UUIDModel, UpdateInfoModel, LastUpdateModel,
    TitleModel, LinkModel, ExplicitModel)

import logging
logger = logging.getLogger(__name__)


class PodcastQuerySet(models.QuerySet):
    """ Custom queries for Podcasts """

    def alive(self):
        """ Podcasts that have not been reported dead """
        return self.filter(is_dead=False)

    def not_updated_since(self, timestamp):
        """ Podcasts that have not been synced since ``timestamp`` """
        return self.filter(Q(last_update__isnull=True) |
                           Q(last_update__lt=timestamp))


class PodcastManager(models.Manager.from_queryset(PodcastQuerySet)):
    """ Manager for the Podcast model """

    @transaction.atomic
    def get_or_create_for_url(self, url, defaults=None):
        """ Returns (podcast, created) for the feed URL """
        return self.get_or_create(url=url, defaults=defaults or {})


class Podcast(UUIDModel, TitleModel, LinkModel, LastUpdateModel,
        UpdateInfoModel, ExplicitModel):
    """ A Podcast, identified by the URL of its feed """

    # the feed URL; this is the topic of WebSub subscriptions
    url = models.URLField(max_length=2048, unique=True)

    description = models.TextField(null=False, blank=True)
    language = models.CharField(max_length=10, null=True, blank=True)
    author = models.CharField(max_length=350, null=True, blank=True)

    # artwork as referenced by the feed
    logo_url = models.URLField(null=True, blank=True, max_length=1000)

    # artwork after it went through the image pipeline. Written by the
    # pipeline only, feed updates leave it alone
    optimized_logo_url = models.URLField(null=True, blank=True, max_length=1000)

    # the WebSub hub advertised by the feed
    hub = models.URLField(null=True, blank=True, max_length=1000)

    # lastBuildDate / pubDate of the feed at the last successful sync
    last_build_date = models.DateTimeField(null=True, blank=True)

    # release timestamp of the most recent episode
    latest_episode_timestamp = models.DateTimeField(null=True, blank=True)

    episode_count = models.PositiveIntegerField(default=0)

    # the feed could not be fetched or parsed during the last sync
    has_parse_errors = models.BooleanField(default=False, db_index=True)

    # set from an external health check; dead feeds are not polled
    is_dead = models.BooleanField(default=False, db_index=True)

    objects = PodcastManager()

    class Meta:
        ordering = ['title']

    def __str__(self):
        return self.title or self.url

    @property
    def logo(self):
        """ The best available artwork """
        return self.optimized_logo_url or self.logo_url

    def latest_episode(self):
        return self.episode_set.filter(released__isnull=False).order_by('released').last()


class EpisodeQuerySet(models.QuerySet):
    """ QuerySet for Episodes """

    def with_guid(self, guid):
        return self.filter(guid=guid)

    def with_enclosure(self, url):
        return self.filter(enclosure_url=url)


class Episode(UUIDModel, TitleModel, LinkModel, LastUpdateModel,
        UpdateInfoModel, ExplicitModel):
    """ An episode

    An episode is identified within its podcast by the GUID from the feed, or
    by the URL of its media file if the feed does not provide a GUID. """

    podcast = models.ForeignKey(Podcast, on_delete=models.CASCADE)
    guid = models.CharField(max_length=2048, null=True, blank=True)
    enclosure_url = models.URLField(max_length=2048)
    content = models.TextField(blank=True)
    released = models.DateTimeField(null=True, blank=True, db_index=True)

    # duration in seconds
    duration = models.PositiveIntegerField(null=True, blank=True)
    filesize = models.BigIntegerField(null=True, blank=True)
    mimetype = models.CharField(max_length=100, blank=True)

    image_url = models.URLField(null=True, blank=True, max_length=1000)

    # see Podcast.optimized_logo_url
    optimized_image_url = models.URLField(null=True, blank=True, max_length=1000)

    objects = EpisodeQuerySet.as_manager()

    class Meta:
        ordering = ['-released']

        constraints = [
            # the GUID is the primary identifier, if the feed provides one
            models.UniqueConstraint(
                fields=['podcast', 'guid'],
                condition=Q(guid__isnull=False),
                name='episode_unique_guid',
            ),
            # the media file is the fallback identifier
            models.UniqueConstraint(
                fields=['podcast', 'enclosure_url'],
                name='episode_unique_enclosure',
            ),
        ]

        indexes = [
            models.Index(fields=['podcast', 'released'],
                         name='episode_podcast_released'),
        ]

    @property
    def identity(self):
        """ The key under which the episode is known within its podcast """
        return self.guid or self.enclosure_url

    @property
    def image(self):
        return self.optimized_image_url or self.image_url
