from datetime import timedelta

from django.conf import settings
from django.core.cache import cache
from django.db.models import F
from django.utils import timezone

from podsync.celery import celery
from podsync.podcasts.models import Podcast
from podsync.pubsub.models import CallbackLog
from podsync.pubsub import tasks as pubsub_tasks
from podsync.data.models import FeedSyncResult

from celery.utils.log import get_task_logger

logger = get_task_logger(__name__)


# interval in which the reconciliation runs
UPDATE_INTERVAL = timedelta(hours=1)

RECONCILE_LOCK = 'podsync-reconcile-lock'

# well above the interval, so that a slow run keeps its lock; a run that
# dies while holding it blocks later ones for at most this long
RECONCILE_LOCK_TIMEOUT = UPDATE_INTERVAL * 6


@celery.task
def update_podcasts(podcast_urls, trigger=FeedSyncResult.PULL):
    """ Task to update a podcast """
    from podsync.data.feeddownloader import update_podcasts as update

    podcasts = update(podcast_urls, trigger=trigger)
    podcasts = filter(None, podcasts)
    return [podcast.pk.hex for podcast in podcasts]


def stale_podcasts(now=None):
    """ Podcasts that neither were pushed nor polled within the stale window

    The podcasts that have waited longest come first. """
    now = now or timezone.now()
    since = now - timedelta(hours=settings.FEED_STALE_HOURS)

    pushed = CallbackLog.objects.filter(
        type=CallbackLog.NOTIFICATION,
        response_status=200,
        created__gte=since,
    ).values('topic_url')

    return (
        Podcast.objects.alive()
        .not_updated_since(since)
        .exclude(url__in=pushed)
        .order_by(F('last_update').asc(nulls_first=True))
    )


def schedule_stale(now=None, max_updates=None):
    """ Schedules pull syncs for stale podcasts; returns their number """
    max_updates = max_updates or settings.FEED_SYNC_MAX_PER_RUN

    podcasts = stale_podcasts(now).only('pk', 'url')[:max_updates]
    urls = [podcast.url for podcast in podcasts]

    logger.info('Scheduling %d podcasts for update', len(urls))

    # one task per feed; they run concurrently on the "feeds" queue
    for url in urls:
        update_podcasts.delay([url])

    return len(urls)


@celery.task
def schedule_stale_syncs():
    """ Schedule podcasts for update that have not been pushed or polled """
    return schedule_stale()


@celery.task
def reconcile():
    """ Expires and renews subscriptions and polls stale feeds

    A run is skipped if the previous one has not finished yet. """

    timeout = RECONCILE_LOCK_TIMEOUT.total_seconds()

    if not cache.add(RECONCILE_LOCK, timezone.now().isoformat(), timeout=timeout):
        logger.warning('Previous reconciliation is still running, skipping')
        return None

    try:
        now = timezone.now()
        steps = [
            ('expired', pubsub_tasks.expire),
            ('renewed', pubsub_tasks.renew),
            ('scheduled', schedule_stale),
        ]

        summary = {}
        for name, step in steps:
            summary[name] = step(now)
            # extend the lock for the remaining steps
            cache.touch(RECONCILE_LOCK, timeout)

        logger.info('Reconciliation finished: %s', summary)
        return summary

    finally:
        cache.delete(RECONCILE_LOCK)
