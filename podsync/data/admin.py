from django.contrib import admin

from . import models


@admin.register(models.FeedSyncResult)
class FeedSyncResultAdmin(admin.ModelAdmin):
    model = models.FeedSyncResult

    list_display = ['title', 'trigger', 'start', 'duration', 'status',
                    'successful', 'episodes_added', 'episodes_updated']

    list_filter = ['trigger', 'status', 'successful']

    readonly_fields = ['id', 'podcast_url', 'podcast', 'trigger', 'start',
                       'duration', 'successful', 'status', 'error_message',
                       'podcast_created', 'episodes_added', 'episodes_updated']

    def has_add_permission(self, request):
        return False

    def title(self, res):
        return res.podcast or res.podcast_url
