# -*- coding: utf-8 -*-
#
# WebSub (PubSubHubbub) subscriber for podsync
#
#

import urllib.parse
from datetime import timedelta

import requests
from django.conf import settings
from django.urls import reverse
from django.utils import timezone

from podsync.utils import random_token
from podsync.core.retry import RetryPolicy
from podsync.pubsub.models import (HubSubscription, SubscriptionError,
    TransientHubError)
from podsync.pubsub.discovery import discover_hub

import logging

logger = logging.getLogger(__name__)


# statuses with which hubs (or the proxies in front of them) tell us to come
# back later
TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504}


def is_transient(exc):
    return isinstance(exc, TransientHubError)


def callback_url(feedurl, base_url):
    callback = reverse('pubsub-subscribe')
    param = urllib.parse.urlencode([('url', feedurl)])
    return '{base}{callback}?{param}'.format(base=base_url.rstrip('/'),
                                             callback=callback, param=param)


class HubSubscriber(object):
    """ Sends subscription requests to hubs and keeps track of them

    One instance is usually created per process or task; the collaborators
    can be passed in for tests. """

    def __init__(self, session=None, base_url=None, retry_policy=None,
                 now=None, lease_seconds=None, timeout=None, verify=None):
        if session is None:
            session = requests.Session()
            session.headers['User-Agent'] = settings.USER_AGENT

        self.session = session
        self.base_url = settings.DEFAULT_BASE_URL if base_url is None else base_url
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.PUBSUB_RETRY_ATTEMPTS,
            delay=settings.PUBSUB_RETRY_DELAY,
            retryable=is_transient,
        )
        self.now = now or timezone.now
        self.lease_seconds = lease_seconds or settings.PUBSUB_LEASE_SECONDS
        self.timeout = timeout or settings.PUBSUB_REQUEST_TIMEOUT
        self.verify = verify or settings.PUBSUB_VERIFY_MODE

    def callback_url(self, topic):
        """ The URL at which the hub calls us back for ``topic`` """
        return callback_url(topic, self.base_url)

    def subscribe(self, topic, hub, podcast=None, renew=False):
        """ Subscribes to the topic at the hub

        Returns True if the hub accepted the request or an active
        subscription already exists. Failures are logged and reported as
        False, so that a single unavailable hub does not break an update
        run. With ``renew`` an active subscription is re-requested. """

        if not self.base_url:
            logger.warning('Could not subscribe to %s: DEFAULT_BASE_URL not set',
                           topic)
            return False

        now = self.now()
        existing = HubSubscription.objects.for_topic(topic).first()

        if not renew and existing and existing.is_active(now):
            if existing.hub_url != hub:
                logger.info('subscription for %s is active at %s, not at %s',
                            topic, existing.hub_url, hub)
            else:
                logger.info('subscription for %s already exists', topic)
            return True

        # a renewal keeps the secret, so that notifications that are signed
        # before the hub verifies the renewal can still be checked
        if renew and existing and existing.secret:
            secret = existing.secret
        else:
            secret = random_token()

        logger.info('subscribing for {feed} at {hub}'.format(feed=topic, hub=hub))

        data = {
            'hub.mode': HubSubscription.SUBSCRIBE,
            'hub.topic': topic,
            'hub.callback': self.callback_url(topic),
            'hub.secret': secret,
            'hub.lease_seconds': str(self.lease_seconds),
            'hub.verify': self.verify,
        }

        try:
            self.retry_policy.call(self._send, hub, data)

        except SubscriptionError as ex:
            logger.warning('Subscription for %s at %s failed: %s', topic, hub, ex)
            return False

        defaults = {
            'hub_url': hub,
            'secret': secret,
            'mode': HubSubscription.SUBSCRIBE,
            'requested_lease_seconds': self.lease_seconds,
        }

        if podcast is not None:
            defaults['podcast'] = podcast

        # an active subscription stays active until the hub verifies the
        # renewal; a new one is pending and expires provisionally
        if not (renew and existing and existing.is_active(now)):
            defaults.update({
                'status': HubSubscription.PENDING,
                'lease_seconds': self.lease_seconds,
                'expires_at': now + timedelta(seconds=self.lease_seconds),
            })

        HubSubscription.objects.update_or_create(topic_url=topic,
                                                 defaults=defaults)
        return True

    def unsubscribe(self, topic):
        """ Asks the hub to end the subscription

        The row is expired when the hub verifies the request. """
        subscription = HubSubscription.objects.for_topic(topic).first()
        if subscription is None:
            logger.info('no subscription for %s', topic)
            return False

        if not self.base_url:
            logger.warning('Could not unsubscribe from %s: DEFAULT_BASE_URL not set',
                           topic)
            return False

        data = {
            'hub.mode': HubSubscription.UNSUBSCRIBE,
            'hub.topic': topic,
            'hub.callback': self.callback_url(topic),
            'hub.secret': subscription.secret,
            'hub.verify': self.verify,
        }

        try:
            self.retry_policy.call(self._send, subscription.hub_url, data)

        except SubscriptionError as ex:
            logger.warning('Unsubscribing %s failed: %s', topic, ex)
            return False

        subscription.mode = HubSubscription.UNSUBSCRIBE
        subscription.save()
        return True

    def _send(self, hub, data):
        """ Sends a request to the hub; raises SubscriptionError on failure """
        logger.debug('sending request: %s', repr(data))

        try:
            resp = self.session.post(hub, data=data, timeout=self.timeout)

        except (requests.exceptions.Timeout,
                requests.exceptions.ConnectionError) as ex:
            raise TransientHubError('Could not reach hub: %r' % ex) from ex

        except requests.exceptions.RequestException as ex:
            raise SubscriptionError('Could not send subscription to Hub: %r' % ex) from ex

        if 200 <= resp.status_code < 300:
            return resp

        msg = 'Could not send subscription to Hub: HTTP Error %d: %s' % \
            (resp.status_code, resp.text[:200])

        if resp.status_code in TRANSIENT_STATUS:
            raise TransientHubError(msg)

        raise SubscriptionError(msg)


def subscribe_at_hub(podcast, hub=None, subscriber=None):
    """ Tries to subscribe to the podcast's feed at its hub """
    hub = hub or podcast.hub or discover_hub(podcast.url)

    if not hub:
        logger.info('no hub for %s', podcast.url)
        return False

    subscriber = subscriber or HubSubscriber()
    return subscriber.subscribe(podcast.url, hub, podcast=podcast)
