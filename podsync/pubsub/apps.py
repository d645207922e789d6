from django.apps import AppConfig


class PubsubConfig(AppConfig):
    name = 'podsync.pubsub'
    verbose_name = 'WebSub'
