# -*- coding: utf-8 -*-
#
# WebSub (PubSubHubbub) subscriber for podsync
#
#

import requests
from django.conf import settings
from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from django.views.generic.base import View

from podsync.utils import to_maxlength
from podsync.pubsub.models import HubSubscription, CallbackLog
from podsync.pubsub.signals import subscription_updated
from podsync.pubsub.signing import verify_signature, InvalidSignature

import logging

logger = logging.getLogger(__name__)


SIGNATURE_HEADERS = ('X-Hub-Signature', 'Hub-Signature')
TOPIC_HEADERS = ('Hub-Topic', 'X-Hub-Topic')

# notification bodies above this size are cut in the log
MAX_LOGGED_BODY = 100_000


def topic_from_link_header(header):
    for link in requests.utils.parse_header_links(header or ''):
        if 'self' in link.get('rel', '').split() and link.get('url'):
            return link['url']
    return None


@method_decorator(csrf_exempt, name='dispatch')
class CallbackView(View):
    """ Endpoint at which hubs verify subscriptions and notify about updates """

    def dispatch(self, request, *args, **kwargs):
        self.topic = ''

        try:
            response = super().dispatch(request, *args, **kwargs)

        except Exception as ex:
            # failed requests are logged as well
            logger.exception('handling callback for %s failed', self.topic)
            response = JsonResponse({'status': 'error', 'error': str(ex)},
                                    status=500)

        self.log(request, response)
        return response

    def log(self, request, response):
        if request.method == 'GET':
            log_type = CallbackLog.VERIFICATION
        else:
            log_type = CallbackLog.NOTIFICATION

        body = request.body.decode('utf-8', 'replace')[:MAX_LOGGED_BODY]

        CallbackLog.objects.create(
            type=log_type,
            topic_url=to_maxlength(CallbackLog, 'topic_url', self.topic or ''),
            method=request.method,
            headers=dict(request.headers),
            params=request.GET.dict(),
            body=body,
            response_status=response.status_code,
            response_body=response.content.decode('utf-8', 'replace'),
        )

    def get(self, request):
        """ Callback used by the Hub to verify the subscription request """

        # received arguments: hub.mode, hub.topic, hub.challenge,
        # hub.lease_seconds
        mode = request.GET.get('hub.mode')
        topic = request.GET.get('hub.topic')
        challenge = request.GET.get('hub.challenge')
        lease_seconds = request.GET.get('hub.lease_seconds')

        self.topic = topic

        logger.debug('received subscription-parameters: mode: %s, topic: %s, '
                     'challenge: %s, lease_seconds: %s',
                     mode, topic, challenge, lease_seconds)

        if not topic or not challenge:
            logger.warning('verification without topic or challenge')
            return HttpResponse(status=400)

        if mode not in (HubSubscription.SUBSCRIBE, HubSubscription.UNSUBSCRIBE):
            logger.warning('invalid mode %s', mode)
            return HttpResponse(status=400)

        if lease_seconds:
            try:
                lease_seconds = int(lease_seconds)
            except ValueError:
                lease_seconds = None

            if lease_seconds is None or lease_seconds <= 0:
                logger.warning('invalid lease_seconds %s',
                               request.GET.get('hub.lease_seconds'))
                return HttpResponse(status=400)
        else:
            lease_seconds = settings.PUBSUB_DEFAULT_LEASE_SECONDS

        subscription = HubSubscription.objects.for_topic(topic).first()

        if subscription is None:
            logger.warning('subscription for %s does not exist', topic)
            return HttpResponse(status=404)

        # only the mode we requested last can be verified
        if mode != subscription.mode:
            logger.warning('%s verification for %s, but %s was requested',
                           mode, topic, subscription.mode or 'nothing')
            return HttpResponse(status=404)

        now = timezone.now()

        if mode == HubSubscription.SUBSCRIBE:
            subscription.activate(lease_seconds, now)
            logger.info('subscription for %s confirmed, lease %ds',
                        topic, lease_seconds)

        else:
            subscription.expire(now)
            logger.info('unsubscription for %s confirmed', topic)

        return HttpResponse(challenge, content_type='text/plain')

    def post(self, request):
        """ Callback to notify about a feed update """

        topic = self.topic = self.notification_topic(request)

        if not topic:
            logger.info('received notification without url')
            return HttpResponse(status=400)

        logger.info('received notification for %s', topic)

        subscription = HubSubscription.objects.active_for_topic(topic)

        if subscription is None:
            logger.warning('no active subscription for %s', topic)
            return HttpResponse(status=404)

        signature = self.signature(request)

        if signature:
            try:
                valid = verify_signature(subscription.secret, request.body,
                                         signature)
            except InvalidSignature as ex:
                logger.warning('malformed signature for %s: %s', topic, ex)
                valid = False

            if not valid:
                logger.warning('invalid signature for %s', topic)
                return HttpResponse(status=403)

        elif settings.PUBSUB_REQUIRE_SIGNATURE:
            logger.warning('unsigned notification for %s', topic)
            return HttpResponse(status=403)

        # only a signed body is known to come from the hub; otherwise the
        # feed is fetched from the topic URL
        document = request.body if signature else None

        try:
            results = subscription_updated.send(sender=topic, document=document)

        except Exception as ex:
            logger.exception('updating %s after notification failed', topic)
            return JsonResponse({'status': 'error', 'error': str(ex)},
                                status=500)

        results = [result for receiver, result in results if result is not None]

        if not results:
            logger.error('notification for %s has not been processed', topic)
            return JsonResponse({'status': 'error',
                                 'error': 'no synchronizer'}, status=500)

        return JsonResponse(results[0].status_payload())

    def notification_topic(self, request):
        topic = request.GET.get('url')
        if topic:
            return topic

        for header in TOPIC_HEADERS:
            if request.headers.get(header):
                return request.headers[header]

        return topic_from_link_header(request.headers.get('Link'))

    def signature(self, request):
        for header in SIGNATURE_HEADERS:
            if request.headers.get(header):
                return request.headers[header]

        return None
