import django.dispatch

# sent when a hub notified us about an update of a topic; sender is the
# topic URL, ``document`` the body of the notification (may be empty)
#
# a receiver synchronizes the feed and returns the result
subscription_updated = django.dispatch.Signal()
