from itertools import islice

from podsync.data.management.podcastcmd import PodcastCommand
from podsync.data.feeddownloader import update_podcasts
from podsync.data.models import FeedSyncResult

import logging
logger = logging.getLogger(__name__)


class Command(PodcastCommand):
    """ Synchronizes podcast feeds by fetching them """

    help = 'Synchronizes the feeds of podcasts'

    def add_arguments(self, parser):

        super().add_arguments(parser)
        parser.add_argument('--list-only', action='store_true', dest='list',
            default=False, help="Don't update anything, just list podcasts ")

    def handle(self, *args, **options):

        queue = self.get_podcasts(*args, **options)

        max_podcasts = options.get('max')
        if max_podcasts:
            queue = islice(queue, 0, max_podcasts)

        if options.get('list'):
            for podcast in queue:
                logger.info('Podcast %s', podcast)
                self.stdout.write(podcast)

        else:
            logger.info('Updating podcasts...')

            for podcast in update_podcasts(queue, trigger=FeedSyncResult.MANUAL):
                logger.info('Updated podcast %s', podcast)
