from itertools import chain

from django.core.management.base import BaseCommand

from podsync.podcasts.models import Podcast


class PodcastCommand(BaseCommand):
    """ command that operates on a list of podcasts specified by parameters """

    def add_arguments(self, parser):
        parser.add_argument('--max', action='store', dest='max', type=int,
            default=0, help="Set how many feeds should be updated at maximum")

        parser.add_argument('--stale', action='store_true', dest='stale',
            default=False, help="Podcasts that have neither been pushed nor "
                                "polled within FEED_STALE_HOURS")

        parser.add_argument('urls', nargs='*', type=str)

    def get_podcasts(self, *args, **options):
        return chain.from_iterable(self._get_podcasts(*args, **options))

    def _get_podcasts(self, *args, **options):
        from podsync.data.tasks import stale_podcasts

        max_podcasts = options.get('max') or None

        if options.get('stale'):
            podcasts = stale_podcasts()[:max_podcasts]
            yield (p.url for p in podcasts)

        if options.get('urls'):
            yield options.get('urls')

        if not options.get('urls') and not options.get('stale'):
            query = Podcast.objects.alive().order_by('last_update')
            podcasts = query[:max_podcasts]
            yield (p.url for p in podcasts)
