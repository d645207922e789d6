from django.db import models
from django.utils import timezone

from podsync.core.models import UUIDModel
from podsync.podcasts.models import Podcast


class FeedSyncResult(UUIDModel):
    """Results of a feed synchronization

    Once an instance is stored, the synchronization is assumed to be finished."""

    PUSH = "push"
    PULL = "pull"
    MANUAL = "manual"

    TRIGGER_CHOICES = ((PUSH, "push"), (PULL, "pull"), (MANUAL, "manual"))

    UPDATED = "updated"
    SKIPPED = "skipped"
    PARSE_ERROR = "parse-error"
    ERROR = "error"

    STATUS_CHOICES = (
        (UPDATED, "updated"),
        (SKIPPED, "skipped"),
        (PARSE_ERROR, "parse error"),
        (ERROR, "error"),
    )

    # URL of the feed to be synchronized
    podcast_url = models.URLField(max_length=2048)

    # The podcast that was updated
    podcast = models.ForeignKey(Podcast, on_delete=models.CASCADE, null=True)

    # what caused the synchronization
    trigger = models.CharField(choices=TRIGGER_CHOICES, max_length=6, default=PULL)

    # The timestamp at which the synchronization started to be executed
    start = models.DateTimeField(default=timezone.now)

    # The duration of the synchronization
    duration = models.DurationField()

    # A flag indicating whether the synchronization ran without exception
    successful = models.BooleanField()

    status = models.CharField(choices=STATUS_CHOICES, max_length=11, default=UPDATED)

    # An error message. Should be empty if the synchronization was successful
    error_message = models.TextField(blank=True)

    # A flag indicating whether the synchronization created the podcast
    podcast_created = models.BooleanField(default=False)

    # The number of episodes that were created by the synchronization
    episodes_added = models.IntegerField(default=0)

    # The number of existing episodes that were changed
    episodes_updated = models.IntegerField(default=0)

    class Meta(object):

        get_latest_by = "start"

        ordering = ["-start"]

        indexes = [models.Index(fields=["podcast", "start"], name="feedsync_podcast_start")]

    def __str__(self):
        return 'Sync Result for "{}" @ {:%Y-%m-%d %H:%M}'.format(
            self.podcast or self.podcast_url, self.start
        )

    @property
    def skipped(self):
        return self.status == self.SKIPPED

    def status_payload(self):
        """ Summary that is returned to hubs """
        return {
            "status": self.status,
            "episodes_added": self.episodes_added,
            "episodes_updated": self.episodes_updated,
        }

    # Use as context manager

    def __enter__(self):
        self.start = timezone.now()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.duration = timezone.now() - self.start

        success = (exc_type, exc_value, traceback) == (None, None, None)
        self.successful = success

        if not success:
            self.status = self.ERROR
            self.error_message = str(exc_value)

        self.save()
