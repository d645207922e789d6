from itertools import islice

from podsync.data.management.podcastcmd import PodcastCommand
from podsync.podcasts.models import Podcast
from podsync.pubsub.utils import HubSubscriber, subscribe_at_hub

import logging
logger = logging.getLogger(__name__)


class Command(PodcastCommand):
    """ Subscribes to the feeds of podcasts at their hubs """

    help = 'Discovers the hubs of podcasts and subscribes to them'

    def handle(self, *args, **options):

        queue = self.get_podcasts(*args, **options)

        max_podcasts = options.get('max')
        if max_podcasts:
            queue = islice(queue, 0, max_podcasts)

        subscriber = HubSubscriber()
        subscribed = 0

        for url in queue:
            podcast = Podcast.objects.filter(url=url).first()
            if podcast is None:
                logger.info('Unknown podcast %s, skipping', url)
                continue

            if subscribe_at_hub(podcast, subscriber=subscriber):
                subscribed += 1

        self.stdout.write('%d podcasts subscribed' % subscribed)
