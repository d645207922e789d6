import unittest
import doctest
from unittest import mock

import podsync.utils
from podsync.core.retry import RetryPolicy


class TransientError(Exception):
    pass


class PermanentError(Exception):
    pass


class RetryPolicyTests(unittest.TestCase):
    """ Test the fixed-delay retry policy without any network calls """

    def setUp(self):
        self.sleep = mock.Mock()
        self.policy = RetryPolicy(
            max_attempts=3,
            delay=5,
            retryable=lambda exc: isinstance(exc, TransientError),
            sleep=self.sleep,
        )

    def test_success_first_attempt(self):
        func = mock.Mock(return_value='ok')
        self.assertEqual(self.policy.call(func, 1, x=2), 'ok')
        func.assert_called_once_with(1, x=2)
        self.sleep.assert_not_called()

    def test_retries_transient_errors(self):
        func = mock.Mock(side_effect=[TransientError(), TransientError(), 'ok'])
        self.assertEqual(self.policy.call(func), 'ok')
        self.assertEqual(func.call_count, 3)
        self.assertEqual(self.sleep.call_args_list, [mock.call(5), mock.call(5)])

    def test_gives_up_after_max_attempts(self):
        func = mock.Mock(side_effect=TransientError('still down'))
        with self.assertRaises(TransientError):
            self.policy.call(func)
        self.assertEqual(func.call_count, 3)
        # no sleep after the last attempt
        self.assertEqual(self.sleep.call_count, 2)

    def test_terminal_errors_are_not_retried(self):
        func = mock.Mock(side_effect=PermanentError())
        with self.assertRaises(PermanentError):
            self.policy.call(func)
        func.assert_called_once_with()
        self.sleep.assert_not_called()

    def test_invalid_attempts(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)


class UtilsDoctests(unittest.TestCase):

    def test_doctests(self):
        result = doctest.testmod(podsync.utils)
        self.assertEqual(result.failed, 0)
