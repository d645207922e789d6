from django.contrib import admin, messages

from podsync.pubsub.models import HubSubscription, CallbackLog
from podsync.pubsub.utils import HubSubscriber


class ReadOnlyAdmin(admin.ModelAdmin):
    """ Rows are written by the subscriber only """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(HubSubscription)
class HubSubscriptionAdmin(ReadOnlyAdmin):
    """ Admin page for WebSub subscriptions """

    # configuration for the list view
    list_display = ('topic_url', 'podcast', 'hub_url', 'status', 'expires_at',
                    'verified_at')

    # fetch the related objects for the fields in list_display
    list_select_related = ('podcast', )

    raw_id_fields = ('podcast', )

    list_filter = ('status', 'mode', )

    search_fields = ('topic_url', 'podcast__title', 'hub_url', )

    exclude = ('secret', )

    actions = ['force_renew']

    @admin.action(description='Renew the selected subscriptions at their hub')
    def force_renew(self, request, queryset):
        subscriber = HubSubscriber()
        renewed = 0

        for subscription in queryset.select_related('podcast'):
            if subscriber.subscribe(subscription.topic_url,
                                    subscription.hub_url,
                                    podcast=subscription.podcast, renew=True):
                renewed += 1

        level = messages.SUCCESS if renewed == queryset.count() else messages.WARNING
        self.message_user(request, '%d of %d subscriptions renewed' %
                          (renewed, queryset.count()), level)


@admin.register(CallbackLog)
class CallbackLogAdmin(ReadOnlyAdmin):
    """ Requests that hubs sent to the callback endpoint """

    list_display = ('created', 'type', 'topic_url', 'method', 'response_status')

    list_filter = ('type', 'response_status', )

    search_fields = ('topic_url', )

    date_hierarchy = 'created'
