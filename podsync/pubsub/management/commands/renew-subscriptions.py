from django.core.management.base import BaseCommand

from podsync.pubsub.tasks import renew


class Command(BaseCommand):
    """ Renews subscriptions before their lease ends """

    help = 'Renews WebSub subscriptions that are about to expire'

    def add_arguments(self, parser):
        parser.add_argument('--all', action='store_true', dest='all',
            default=False, help="Renew all active subscriptions")

    def handle(self, *args, **options):
        renewed = renew(renew_all=options.get('all'))
        self.stdout.write('%d subscriptions renewed' % renewed)
