from django.contrib import admin, messages
from django.utils.html import format_html

from podsync.podcasts.models import Podcast, Episode
from podsync.utils import edit_link


class AdminLinkMixin(object):
    """ Adds an Admin link """

    def admin_link(self, instance):
        """ Link to the admin page """

        if not instance.pk:
            return ''

        url = edit_link(instance)
        return format_html('<a href="{}">{}</a>', url, 'Edit')

    readonly_fields = ('admin_link',)


class EpisodeInline(AdminLinkMixin, admin.TabularInline):
    model = Episode

    fields = ('title', 'guid', 'enclosure_url', 'released', 'admin_link')

    readonly_fields = ('title', 'guid', 'enclosure_url', 'released') + \
        AdminLinkMixin.readonly_fields

    can_delete = False

    max_num = 0

    ordering = ('-released', )


@admin.register(Podcast)
class PodcastAdmin(admin.ModelAdmin):
    """ Admin page for podcasts """

    # configuration for the list view
    list_display = ('title', 'url', 'last_update', 'episode_count',
                    'has_parse_errors', 'is_dead')

    list_filter = ('has_parse_errors', 'is_dead', 'language', )

    search_fields = ('title', 'url', )

    inlines = [EpisodeInline]

    # fields that are written by the synchronizer
    readonly_fields = ('id', 'url', 'hub', 'last_build_date',
                       'latest_episode_timestamp', 'episode_count',
                       'last_update', 'has_parse_errors', 'created',
                       'modified', )

    actions = ['force_resync']

    @admin.action(description='Synchronize the selected podcasts now')
    def force_resync(self, request, queryset):
        from podsync.data.feeddownloader import FeedSynchronizer
        from podsync.data.models import FeedSyncResult

        for podcast in queryset:
            synchronizer = FeedSynchronizer(podcast.url,
                                            trigger=FeedSyncResult.MANUAL)
            res = synchronizer.sync()

            if res.status == FeedSyncResult.PARSE_ERROR:
                level = messages.WARNING
            else:
                level = messages.SUCCESS

            self.message_user(request, '%s: %s, %d episodes added' %
                              (podcast, res.status, res.episodes_added), level)


@admin.register(Episode)
class EpisodeAdmin(admin.ModelAdmin):
    """ Admin page for episodes """

    # configuration for the list view
    list_display = ('title', 'podcast', 'released', 'guid')

    # fetch the related objects for the fields in list_display
    list_select_related = ('podcast', )

    raw_id_fields = ('podcast', )

    search_fields = ('title', 'guid', 'enclosure_url', )

    readonly_fields = ('id', 'created', 'modified', 'last_update', )
