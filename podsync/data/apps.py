from django.apps import AppConfig
from podsync.pubsub.signals import subscription_updated

import logging
logger = logging.getLogger(__name__)


def sync_podcast(sender, document=None, **kwargs):
    """ synchronize the podcast when receiving a pubsub-notification """
    from podsync.data.feeddownloader import FeedSynchronizer
    from podsync.data.models import FeedSyncResult

    logger.info('updating podcast for "%s" after pubsub notification', sender)
    synchronizer = FeedSynchronizer(sender, trigger=FeedSyncResult.PUSH)
    return synchronizer.sync(document)


class DataAppConfig(AppConfig):
    name = 'podsync.data'

    def ready(self):
        subscription_updated.connect(sync_podcast,
                                     dispatch_uid='sync_podcast-pubsub')
