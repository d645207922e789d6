import doctest
import unittest
import urllib.parse
from datetime import timedelta
from unittest import mock

import requests
import responses

from django.test import TestCase, Client, override_settings
from django.urls import reverse
from django.utils import timezone

from podsync.core.retry import RetryPolicy
from podsync.podcasts.models import Podcast, Episode
from podsync.data.models import FeedSyncResult
from podsync.pubsub import signing
from podsync.pubsub.models import HubSubscription, CallbackLog
from podsync.pubsub.signing import (sign, verify_signature, parse_signature,
    InvalidSignature)
from podsync.pubsub.discovery import discover_hub
from podsync.pubsub.utils import HubSubscriber, is_transient, subscribe_at_hub
from podsync.pubsub import tasks


TOPIC = 'https://example.com/feed.xml'
HUB = 'https://hub.example.com/'


FEED = """<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
  <channel>
    <title>Example Podcast</title>
    <link>https://example.com/</link>
    <description>An example</description>
    <lastBuildDate>Mon, 06 Jan 2025 10:00:00 +0000</lastBuildDate>
    {hub}
    <item>
      <title>Episode 42</title>
      <guid isPermaLink="false">ep-42</guid>
      <pubDate>Mon, 06 Jan 2025 09:00:00 +0000</pubDate>
      <enclosure url="https://example.com/ep42.mp3" type="audio/mpeg" length="1234"/>
    </item>
  </channel>
</rss>
"""


def feed(hub=''):
    if hub:
        hub = '<atom:link rel="hub" href="{}"/>'.format(hub)
    return FEED.format(hub=hub)


def active_subscription(topic=TOPIC, expires_in=timedelta(hours=20), **kwargs):
    now = timezone.now()
    defaults = dict(
        topic_url=topic,
        hub_url=HUB,
        secret='s3cret',
        mode=HubSubscription.SUBSCRIBE,
        status=HubSubscription.ACTIVE,
        requested_lease_seconds=86400,
        lease_seconds=86400,
        expires_at=now + expires_in,
        verified_at=now,
    )
    defaults.update(kwargs)
    return HubSubscription.objects.create(**defaults)


class SigningTests(unittest.TestCase):
    """ Test HMAC signing of notifications """

    def test_sign_verify(self):
        header = sign('secret', b'body')
        self.assertTrue(header.startswith('sha1='))
        self.assertTrue(verify_signature('secret', b'body', header))

    def test_wrong_secret(self):
        header = sign('other secret', b'body')
        self.assertFalse(verify_signature('secret', b'body', header))

    def test_modified_body(self):
        header = sign('secret', b'body')
        self.assertFalse(verify_signature('secret', b'body!', header))

    def test_sha256(self):
        header = sign('secret', b'body', 'sha256')
        self.assertTrue(verify_signature('secret', b'body', header))

    def test_malformed(self):
        for header in ('', 'sha1', 'sha1=', 'md5=abc'):
            with self.assertRaises(InvalidSignature):
                parse_signature(header)

    def test_doctests(self):
        result = doctest.testmod(signing)
        self.assertEqual(result.failed, 0)


class DiscoveryTests(unittest.TestCase):
    """ Test finding the hub of a feed """

    def test_link_header(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=feed(),
                     headers={'Link': '<{}>; rel="hub", <{}>; rel="self"'
                                      .format(HUB, TOPIC)})
            self.assertEqual(discover_hub(TOPIC, fallback_hubs=[]), HUB)

    def test_atom_link(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=feed(HUB))
            self.assertEqual(discover_hub(TOPIC, fallback_hubs=[]), HUB)

    def test_link_attribute_order(self):
        page = '<html><head><link href="{}" rel="hub"></head></html>'.format(HUB)
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=page)
            self.assertEqual(discover_hub(TOPIC, fallback_hubs=[]), HUB)

    def test_fallback_hub(self):
        fallback = 'https://fallback.example.net/'
        dead = 'https://dead.example.net/'
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=feed())
            rsps.add(responses.HEAD, dead, status=503)
            rsps.add(responses.HEAD, fallback, status=405)
            self.assertEqual(discover_hub(TOPIC, fallback_hubs=[dead, fallback]),
                             fallback)

    def test_no_hub(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=feed())
            self.assertIsNone(discover_hub(TOPIC, fallback_hubs=[]))

    def test_network_error(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC,
                     body=requests.exceptions.ConnectionError('down'))
            self.assertIsNone(discover_hub(TOPIC, fallback_hubs=[HUB]))


class HubSubscriberTests(TestCase):
    """ Test sending subscription requests to hubs """

    def setUp(self):
        self.sleep = mock.Mock()
        self.subscriber = HubSubscriber(
            base_url='http://podsync.test',
            retry_policy=RetryPolicy(3, delay=1, retryable=is_transient,
                                     sleep=self.sleep),
        )

    def test_subscribe(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB))

            data = urllib.parse.parse_qs(rsps.calls[0].request.body)

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)
        self.assertEqual(subscription.hub_url, HUB)
        self.assertEqual(len(subscription.secret), 64)

        self.assertEqual(data['hub.mode'], ['subscribe'])
        self.assertEqual(data['hub.topic'], [TOPIC])
        self.assertEqual(data['hub.secret'], [subscription.secret])
        self.assertEqual(data['hub.lease_seconds'], ['86400'])
        self.assertEqual(data['hub.verify'], ['async'])
        self.assertEqual(data['hub.callback'],
                         ['http://podsync.test/pubsub/subscribe?url=' +
                          urllib.parse.quote_plus(TOPIC)])

    def test_secrets_differ(self):
        other = 'https://example.com/other.xml'
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.subscriber.subscribe(TOPIC, HUB)
            self.subscriber.subscribe(other, HUB)

        secrets = HubSubscription.objects.values_list('secret', flat=True)
        self.assertEqual(len(set(secrets)), 2)

    def test_idempotent(self):
        subscription = active_subscription()

        with responses.RequestsMock() as rsps:
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB))
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 0)

        stored = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(stored.modified, subscription.modified)
        self.assertEqual(stored.secret, subscription.secret)
        self.assertEqual(stored.status, HubSubscription.ACTIVE)

    def test_active_at_other_hub(self):
        subscription = active_subscription()

        with responses.RequestsMock() as rsps:
            self.assertTrue(self.subscriber.subscribe(TOPIC, 'https://other-hub.example.com/'))
            self.assertEqual(len(rsps.calls), 0)

        stored = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(stored.status, HubSubscription.ACTIVE)
        self.assertEqual(stored.hub_url, HUB)
        self.assertEqual(stored.secret, subscription.secret)

    def test_expired_is_resubscribed(self):
        active_subscription(expires_in=timedelta(hours=-1),
                            status=HubSubscription.EXPIRED)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB))

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)
        self.assertNotEqual(subscription.secret, 's3cret')

    def test_transient_error_is_retried(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=504)
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 2)

        self.sleep.assert_called_once_with(1)
        self.assertTrue(HubSubscription.objects.filter(topic_url=TOPIC).exists())

    def test_retries_exhausted(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=409)
            self.assertFalse(self.subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 3)

        self.assertFalse(HubSubscription.objects.exists())

    def test_connection_error(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB,
                     body=requests.exceptions.ConnectTimeout('timeout'))
            self.assertFalse(self.subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 3)

    def test_permanent_error(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=400)
            self.assertFalse(self.subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 1)

        self.sleep.assert_not_called()
        self.assertFalse(HubSubscription.objects.exists())

    def test_renew_keeps_secret_and_status(self):
        subscription = active_subscription(expires_in=timedelta(hours=2))

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(self.subscriber.subscribe(TOPIC, HUB, renew=True))
            data = urllib.parse.parse_qs(rsps.calls[0].request.body)

        stored = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(data['hub.secret'], ['s3cret'])
        self.assertEqual(stored.status, HubSubscription.ACTIVE)
        self.assertEqual(stored.expires_at, subscription.expires_at)

    def test_no_base_url(self):
        subscriber = HubSubscriber(base_url='')
        with responses.RequestsMock() as rsps:
            self.assertFalse(subscriber.subscribe(TOPIC, HUB))
            self.assertEqual(len(rsps.calls), 0)

    def test_unsubscribe(self):
        active_subscription()

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(self.subscriber.unsubscribe(TOPIC))
            data = urllib.parse.parse_qs(rsps.calls[0].request.body)

        self.assertEqual(data['hub.mode'], ['unsubscribe'])

        # expired once the hub verifies the unsubscription
        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.mode, HubSubscription.UNSUBSCRIBE)
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)

    def test_subscribe_at_stored_hub(self):
        podcast = Podcast.objects.create(url=TOPIC, hub=HUB)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=204)
            self.assertTrue(subscribe_at_hub(podcast, subscriber=self.subscriber))

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.podcast, podcast)


class VerificationTests(TestCase):
    """ Test the verification of subscriptions by the hub """

    def setUp(self):
        self.client = Client()
        self.url = reverse('pubsub-subscribe')
        now = timezone.now()
        self.subscription = HubSubscription.objects.create(
            topic_url=TOPIC,
            hub_url=HUB,
            secret='s3cret',
            mode=HubSubscription.SUBSCRIBE,
            requested_lease_seconds=86400,
            lease_seconds=86400,
            expires_at=now + timedelta(days=1),
        )

    def verify(self, **params):
        query = {'hub.mode': 'subscribe', 'hub.topic': TOPIC,
                 'hub.challenge': 'C123'}
        query.update(params)
        query = {key: value for key, value in query.items() if value is not None}
        return self.client.get(self.url, query)

    def test_handshake_echo(self):
        with responses.RequestsMock() as rsps:
            response = self.verify(**{'hub.lease_seconds': '3600'})
            # verification never fetches the feed
            self.assertEqual(len(rsps.calls), 0)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'C123')

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)
        self.assertEqual(subscription.lease_seconds, 3600)
        self.assertIsNotNone(subscription.verified_at)
        lease = subscription.expires_at - subscription.verified_at
        self.assertEqual(lease, timedelta(seconds=3600))

    def test_default_lease(self):
        response = self.verify()
        self.assertEqual(response.status_code, 200)

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.lease_seconds, 86400)

    def test_unsubscribe(self):
        self.subscription.mode = HubSubscription.UNSUBSCRIBE
        self.subscription.save()

        response = self.verify(**{'hub.mode': 'unsubscribe'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'C123')

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.EXPIRED)

    def test_unrequested_unsubscribe(self):
        self.subscription.activate(86400)

        response = self.verify(**{'hub.mode': 'unsubscribe'})
        self.assertEqual(response.status_code, 404)

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)
        self.assertTrue(subscription.is_active())

    def test_subscribe_after_unsubscribe_request(self):
        self.subscription.mode = HubSubscription.UNSUBSCRIBE
        self.subscription.save()

        response = self.verify()
        self.assertEqual(response.status_code, 404)

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)
        self.assertIsNone(subscription.verified_at)

    def test_malformed(self):
        for params in ({'hub.challenge': None},
                       {'hub.topic': None},
                       {'hub.mode': 'denied'},
                       {'hub.lease_seconds': 'forever'},
                       {'hub.lease_seconds': '-5'},
                       {'hub.lease_seconds': '0'}):
            response = self.verify(**params)
            self.assertEqual(response.status_code, 400, params)

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)

    def test_unknown_topic(self):
        response = self.verify(**{'hub.topic': 'https://example.com/other.xml'})
        self.assertEqual(response.status_code, 404)

    def test_logged(self):
        self.verify()
        log = CallbackLog.objects.get()
        self.assertEqual(log.type, CallbackLog.VERIFICATION)
        self.assertEqual(log.topic_url, TOPIC)
        self.assertEqual(log.response_status, 200)
        self.assertEqual(log.response_body, 'C123')

    def test_error_is_logged(self):
        with mock.patch.object(HubSubscription, 'activate',
                               side_effect=RuntimeError('database is gone')):
            response = self.verify()

        self.assertEqual(response.status_code, 500)

        log = CallbackLog.objects.get()
        self.assertEqual(log.topic_url, TOPIC)
        self.assertEqual(log.response_status, 500)

    def test_log_is_append_only(self):
        self.verify()
        log = CallbackLog.objects.get()
        log.response_status = 500
        with self.assertRaises(ValueError):
            log.save()


class NotificationTests(TestCase):
    """ Test notifications about updated feeds """

    def setUp(self):
        self.client = Client()
        self.subscription = active_subscription()
        self.url = '{}?{}'.format(reverse('pubsub-subscribe'),
                                  urllib.parse.urlencode({'url': TOPIC}))
        self.body = feed().encode('utf-8')

    def notify(self, body=None, url=None, **headers):
        body = self.body if body is None else body
        return self.client.post(url or self.url, data=body,
                                content_type='application/rss+xml', **headers)

    def test_valid_signature(self):
        signature = sign('s3cret', self.body)

        with responses.RequestsMock() as rsps:
            response = self.notify(HTTP_X_HUB_SIGNATURE=signature)
            # the pushed document is used, nothing is fetched
            self.assertEqual(len(rsps.calls), 0)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'updated')
        self.assertEqual(response.json()['episodes_added'], 1)

        episode = Episode.objects.get()
        self.assertEqual(episode.guid, 'ep-42')
        self.assertEqual(FeedSyncResult.objects.get().trigger, FeedSyncResult.PUSH)

    def test_wrong_signature(self):
        signature = sign('wrong secret', self.body)
        response = self.notify(HTTP_X_HUB_SIGNATURE=signature)

        self.assertEqual(response.status_code, 403)
        self.assertFalse(Podcast.objects.exists())
        self.assertFalse(Episode.objects.exists())
        self.assertFalse(FeedSyncResult.objects.exists())

        log = CallbackLog.objects.get()
        self.assertEqual(log.type, CallbackLog.NOTIFICATION)
        self.assertEqual(log.response_status, 403)

    def test_malformed_signature(self):
        response = self.notify(HTTP_X_HUB_SIGNATURE='md5=1234')
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Episode.objects.exists())

    def test_hub_signature_header(self):
        signature = sign('s3cret', self.body, 'sha256')
        response = self.notify(HTTP_HUB_SIGNATURE=signature)
        self.assertEqual(response.status_code, 200)

    def test_unsigned(self):
        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=self.body)
            response = self.notify()
            # an unsigned body is not trusted, the feed is fetched instead
            self.assertEqual(len(rsps.calls), 1)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Episode.objects.get().guid, 'ep-42')

    def test_unsigned_body_is_ignored(self):
        forged = FEED.replace('ep-42', 'forged-1').replace(
            'ep42.mp3', 'evil.mp3').format(hub='').encode('utf-8')

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body=self.body)
            response = self.notify(body=forged)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(list(Episode.objects.values_list('guid', 'enclosure_url')),
                         [('ep-42', 'https://example.com/ep42.mp3')])

    @override_settings(PUBSUB_REQUIRE_SIGNATURE=True)
    def test_unsigned_rejected(self):
        response = self.notify()
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Episode.objects.exists())

    def test_unknown_topic(self):
        url = '{}?{}'.format(reverse('pubsub-subscribe'), urllib.parse.urlencode(
            {'url': 'https://example.com/other.xml'}))
        response = self.notify(url=url)
        self.assertEqual(response.status_code, 404)

    def test_expired_subscription(self):
        HubSubscription.objects.filter(pk=self.subscription.pk).update(
            expires_at=timezone.now() - timedelta(minutes=1))
        response = self.notify(HTTP_X_HUB_SIGNATURE=sign('s3cret', self.body))
        self.assertEqual(response.status_code, 404)

    def test_topic_header(self):
        response = self.notify(url=reverse('pubsub-subscribe'),
                               HTTP_HUB_TOPIC=TOPIC,
                               HTTP_X_HUB_SIGNATURE=sign('s3cret', self.body))
        self.assertEqual(response.status_code, 200)

    def test_missing_topic(self):
        response = self.notify(url=reverse('pubsub-subscribe'))
        self.assertEqual(response.status_code, 400)

    def test_sync_error(self):
        with mock.patch('podsync.data.feeddownloader.FeedSynchronizer.sync',
                        side_effect=RuntimeError('database is gone')):
            response = self.notify()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['status'], 'error')

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)
        self.assertEqual(subscription.secret, 's3cret')

    def test_parse_error(self):
        Podcast.objects.create(url=TOPIC, title='Example')

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, TOPIC, status=200, body='no feed')
            response = self.notify(body=b'not a feed either')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'parse-error')
        self.assertTrue(Podcast.objects.get(url=TOPIC).has_parse_errors)


class ExpiryTests(TestCase):
    """ Test the expiry sweep """

    def test_expire(self):
        subscription = active_subscription(expires_in=timedelta(hours=1))

        # not before the lease has ended
        self.assertEqual(tasks.expire(timezone.now()), 0)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)

        later = timezone.now() + timedelta(hours=2)
        self.assertEqual(tasks.expire(later), 1)
        subscription.refresh_from_db()
        self.assertEqual(subscription.status, HubSubscription.EXPIRED)

        # nothing left to do
        self.assertEqual(tasks.expire(later), 0)

    def test_pending_untouched(self):
        active_subscription(expires_in=timedelta(hours=-1),
                            status=HubSubscription.PENDING)
        self.assertEqual(tasks.expire(timezone.now()), 0)

    def test_renew_expiring(self):
        expiring = active_subscription(expires_in=timedelta(hours=2))
        active_subscription(topic='https://example.com/later.xml',
                            expires_in=timedelta(hours=20))

        subscriber = mock.Mock()
        subscriber.subscribe.return_value = True

        self.assertEqual(tasks.renew(timezone.now(), subscriber=subscriber), 1)
        subscriber.subscribe.assert_called_once_with(
            TOPIC, HUB, podcast=None, renew=True)

        expiring.refresh_from_db()
        self.assertEqual(expiring.status, HubSubscription.ACTIVE)

    def test_renew_all(self):
        active_subscription(expires_in=timedelta(hours=2))
        active_subscription(topic='https://example.com/later.xml',
                            expires_in=timedelta(hours=20))

        subscriber = mock.Mock()
        subscriber.subscribe.return_value = False

        self.assertEqual(tasks.renew(renew_all=True, subscriber=subscriber), 0)
        self.assertEqual(subscriber.subscribe.call_count, 2)


class EndToEndTests(TestCase):
    """ Subscribe, verify and receive a notification """

    def test_scenario(self):
        client = Client()
        subscriber = HubSubscriber()

        self.assertFalse(HubSubscription.objects.exists())

        with responses.RequestsMock() as rsps:
            rsps.add(responses.POST, HUB, status=202)
            self.assertTrue(subscriber.subscribe(TOPIC, HUB))

        subscription = HubSubscription.objects.get(topic_url=TOPIC)
        self.assertEqual(subscription.status, HubSubscription.PENDING)

        response = client.get(reverse('pubsub-subscribe'), {
            'hub.mode': 'subscribe',
            'hub.topic': TOPIC,
            'hub.challenge': 'abc',
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'abc')

        subscription.refresh_from_db()
        self.assertEqual(subscription.status, HubSubscription.ACTIVE)

        body = feed().encode('utf-8')
        callback = subscriber.callback_url(TOPIC).replace('http://podsync.test', '')

        response = client.post(callback, data=body,
                               content_type='application/rss+xml',
                               HTTP_X_HUB_SIGNATURE=sign(subscription.secret, body))
        self.assertEqual(response.status_code, 200)

        episode = Episode.objects.get()
        self.assertEqual(episode.identity, 'ep-42')
        self.assertEqual(episode.podcast.url, TOPIC)

        self.assertEqual(CallbackLog.objects.count(), 2)
