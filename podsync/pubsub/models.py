from datetime import timedelta

from django.db import models
from django.utils import timezone

from podsync.podcasts.models import Podcast
from podsync.core.models import UpdateInfoModel


class SubscriptionError(Exception):
    pass


class TransientHubError(SubscriptionError):
    """ The hub could not be reached or asked us to try again later """


class HubSubscriptionQuerySet(models.QuerySet):

    def for_topic(self, topic_url):
        return self.filter(topic_url=topic_url)

    def active(self):
        return self.filter(status=HubSubscription.ACTIVE)

    def active_for_topic(self, topic_url, now=None):
        """ The active subscription for the topic whose lease has not elapsed """
        now = now or timezone.now()
        return self.active().filter(topic_url=topic_url, expires_at__gt=now).first()

    def expired_by(self, now):
        """ Active subscriptions whose lease has elapsed at ``now`` """
        return self.active().filter(expires_at__lt=now)

    def expiring_before(self, timestamp):
        """ Active subscriptions whose lease ends before ``timestamp`` """
        return self.active().filter(expires_at__lt=timestamp)


class HubSubscription(UpdateInfoModel):
    """ A client-side WebSub (PubSubHubbub) subscription

    https://www.w3.org/TR/websub/ """

    SUBSCRIBE = 'subscribe'
    UNSUBSCRIBE = 'unsubscribe'

    MODE_CHOICES = ((SUBSCRIBE, 'subscribe'), (UNSUBSCRIBE, 'unsubscribe'))

    PENDING = 'pending'
    ACTIVE = 'active'
    EXPIRED = 'expired'

    STATUS_CHOICES = (
        (PENDING, 'pending'),
        (ACTIVE, 'active'),
        (EXPIRED, 'expired'),
    )

    # podcast to which the subscription belongs, if it is known already
    podcast = models.ForeignKey(Podcast, null=True, blank=True,
                                on_delete=models.SET_NULL)

    # the topic of the subscription, ie the URL that was subscribed at the hub
    topic_url = models.URLField(max_length=2048, unique=True)

    # the URL of the hub
    hub_url = models.URLField(max_length=1000)

    # the key for the HMAC signatures of notifications; 256 random bits
    secret = models.CharField(max_length=64)

    # the last mode that was requested, either subscribe or unsubscribe
    mode = models.CharField(
        choices=MODE_CHOICES,
        max_length=max(map(len, [mode for mode, name in MODE_CHOICES])),
        blank=True,
    )

    status = models.CharField(
        choices=STATUS_CHOICES,
        max_length=max(map(len, [status for status, name in STATUS_CHOICES])),
        default=PENDING,
        db_index=True,
    )

    # the lease we asked the hub for
    requested_lease_seconds = models.PositiveIntegerField()

    # the lease the hub granted on verification
    lease_seconds = models.PositiveIntegerField()

    # provisional until the subscription is verified
    expires_at = models.DateTimeField(db_index=True)

    verified_at = models.DateTimeField(null=True, blank=True)

    objects = HubSubscriptionQuerySet.as_manager()

    class Meta:
        ordering = ['-modified']

    def __str__(self):
        return '{topic} @ {hub} ({status})'.format(
            topic=self.topic_url, hub=self.hub_url, status=self.status)

    def is_active(self, now=None):
        now = now or timezone.now()
        return self.status == self.ACTIVE and self.expires_at > now

    def activate(self, lease_seconds, now=None):
        """ Marks the subscription verified; the lease starts now """
        now = now or timezone.now()
        self.status = self.ACTIVE
        self.lease_seconds = lease_seconds
        self.expires_at = now + timedelta(seconds=lease_seconds)
        self.verified_at = now
        self.save()

    def expire(self, now=None):
        now = now or timezone.now()
        self.status = self.EXPIRED
        if self.expires_at > now:
            self.expires_at = now
        self.save()


class CallbackLog(models.Model):
    """ A request that a hub sent to our callback endpoint

    Entries are written once and never changed. They are used to diagnose
    missed notifications. """

    VERIFICATION = 'verification'
    NOTIFICATION = 'notification'

    TYPE_CHOICES = (
        (VERIFICATION, 'verification'),
        (NOTIFICATION, 'notification'),
    )

    type = models.CharField(choices=TYPE_CHOICES, max_length=12)
    topic_url = models.URLField(max_length=2048, blank=True)

    method = models.CharField(max_length=10)
    headers = models.JSONField(default=dict)
    params = models.JSONField(default=dict)
    body = models.TextField(blank=True)

    response_status = models.PositiveSmallIntegerField()
    response_body = models.TextField(blank=True)

    created = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created']

        get_latest_by = 'created'

        indexes = [
            models.Index(fields=['topic_url', 'type', 'created'],
                         name='callbacklog_topic_type'),
        ]

    def __str__(self):
        return '{type} for {topic} @ {created:%Y-%m-%d %H:%M}: {status}'.format(
            type=self.type, topic=self.topic_url, created=self.created,
            status=self.response_status)

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError('CallbackLog entries can not be changed')
        super().save(*args, **kwargs)

    @classmethod
    def last_notification(cls, topic_url, accepted=True):
        """ The most recent notification for the topic """
        query = cls.objects.filter(topic_url=topic_url, type=cls.NOTIFICATION)
        if accepted:
            query = query.filter(response_status=200)
        return query.order_by('-created').first()
