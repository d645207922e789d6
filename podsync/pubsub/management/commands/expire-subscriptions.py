from django.core.management.base import BaseCommand

from podsync.pubsub.tasks import expire


class Command(BaseCommand):
    """ Expires subscriptions whose lease has ended """

    help = 'Expires WebSub subscriptions whose lease has ended'

    def handle(self, *args, **options):
        expired = expire()
        self.stdout.write('%d subscriptions expired' % expired)
