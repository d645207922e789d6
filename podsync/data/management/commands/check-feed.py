import requests

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from podsync.podcasts.models import Podcast
from podsync.pubsub.models import HubSubscription, CallbackLog
from podsync.data.feedparse import parse_feed, FeedParseError
from podsync.data.feeddownloader import FeedSynchronizer
from podsync.data.models import FeedSyncResult


class Command(BaseCommand):
    """ Compares a feed with the notifications that have been received for it

    A feed that has been built after the last notification indicates that
    the hub did not push the update. """

    help = 'Checks whether updates of a feed have been pushed'

    def add_arguments(self, parser):
        parser.add_argument('url', type=str)

        parser.add_argument('--process', action='store_true', dest='process',
            default=False, help="Synchronize the feed afterwards")

    def handle(self, *args, **options):
        url = options['url']

        try:
            resp = requests.get(url, timeout=settings.FEED_FETCH_TIMEOUT,
                                headers={'User-Agent': settings.USER_AGENT})
            resp.raise_for_status()
            parsed = parse_feed(resp.content)

        except (requests.exceptions.RequestException, FeedParseError) as ex:
            raise CommandError('Could not check %s: %s' % (url, ex))

        build_date = parsed.get('build_date')
        podcast = Podcast.objects.filter(url=url).first()
        subscription = HubSubscription.objects.for_topic(url).first()
        notification = CallbackLog.last_notification(url)

        self.stdout.write('Feed build date:    %s' % (build_date or 'unknown'))
        self.stdout.write('Hub:                %s' % (parsed.get('hub') or '-'))
        self.stdout.write('Subscription:       %s' % (subscription or '-'))
        self.stdout.write('Last notification:  %s' %
                          (notification.created if notification else '-'))
        self.stdout.write('Last stored build:  %s' %
                          (podcast.last_build_date if podcast else '-'))

        if build_date and (notification is None or
                           notification.created < build_date):
            self.stdout.write(self.style.WARNING(
                'The last update has not been pushed'))
        else:
            self.stdout.write(self.style.SUCCESS('Up to date'))

        if options.get('process'):
            synchronizer = FeedSynchronizer(url, trigger=FeedSyncResult.MANUAL)
            result = synchronizer.sync(resp.content)
            self.stdout.write('Synchronized: %s, %d episodes added, '
                              '%d updated' % (result.status,
                                              result.episodes_added,
                                              result.episodes_updated))
