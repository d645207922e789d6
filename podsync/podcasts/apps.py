from django.apps import AppConfig


class PodcastsConfig(AppConfig):
    name = 'podsync.podcasts'
