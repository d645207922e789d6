from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from podsync.celery import celery
from podsync.pubsub.models import HubSubscription
from podsync.pubsub.utils import HubSubscriber

from celery.utils.log import get_task_logger

logger = get_task_logger(__name__)


def expire(now=None):
    """ Expires active subscriptions whose lease has elapsed

    Returns the number of expired subscriptions """
    now = now or timezone.now()
    expired = 0

    for subscription in HubSubscription.objects.expired_by(now):
        logger.info('Lease for %s has ended at %s', subscription.topic_url,
                    subscription.expires_at)
        subscription.expire(now)
        expired += 1

    return expired


def renew(now=None, renew_all=False, subscriber=None):
    """ Renews active subscriptions that are about to expire

    Returns the number of renewals that the hubs accepted """
    now = now or timezone.now()
    subscriber = subscriber or HubSubscriber()

    if renew_all:
        subscriptions = HubSubscription.objects.active()
    else:
        window = timedelta(hours=settings.PUBSUB_RENEW_BEFORE_HOURS)
        subscriptions = HubSubscription.objects.expiring_before(now + window)

    renewed = 0
    for subscription in subscriptions.select_related('podcast'):
        logger.info('Renewing subscription for %s (expires %s)',
                    subscription.topic_url, subscription.expires_at)
        if subscriber.subscribe(subscription.topic_url, subscription.hub_url,
                                podcast=subscription.podcast, renew=True):
            renewed += 1

    return renewed


@celery.task
def expire_subscriptions():
    """ Task to expire subscriptions whose lease has ended """
    return expire()


@celery.task
def renew_subscriptions():
    """ Task to renew subscriptions before their lease ends """
    return renew()
