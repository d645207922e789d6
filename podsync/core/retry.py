import time

import logging

logger = logging.getLogger(__name__)


class RetryPolicy(object):
    """ Retries a call with a fixed delay between attempts

    ``retryable`` decides whether an exception is worth another attempt;
    everything else is raised immediately. When all attempts are used up,
    the last exception is raised. """

    def __init__(self, max_attempts=3, delay=2, retryable=None, sleep=time.sleep):
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')

        self.max_attempts = max_attempts
        self.delay = delay
        self.retryable = retryable or (lambda exc: True)
        self.sleep = sleep

    def call(self, func, *args, **kwargs):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(*args, **kwargs)

            except Exception as ex:
                if not self.retryable(ex):
                    raise

                if attempt == self.max_attempts:
                    logger.warning('Giving up after %d attempts: %s', attempt, ex)
                    raise

                logger.info('Attempt %d of %d failed (%s), retrying in %ss',
                            attempt, self.max_attempts, ex, self.delay)
                self.sleep(self.delay)

    def __repr__(self):
        return '{cls}(max_attempts={max_attempts}, delay={delay})'.format(
            cls=self.__class__.__name__,
            max_attempts=self.max_attempts,
            delay=self.delay,
        )
