"""
Tests for structured logging with PII masking.
"""
import json
import logging
import sys
from unittest.mock import patch

from django.test import TestCase

from apps.core.logging import JSONFormatter, PIIMasker, SanitizingFilter, SecurityLogger


class PIIMaskerTestCase(TestCase):
    """Test PII masking functionality."""

    def test_mask_email_addresses(self):
        text = "Portal claimed by owner@client.com"
        masked = PIIMasker.mask_text(text)

        self.assertNotIn('owner@client.com', masked)
        self.assertIn('o****@client.com', masked)

    def test_mask_tokens_and_pins(self):
        masked = PIIMasker.mask_text("retry with token=abcDEF123 and pin: 4821")

        self.assertNotIn('abcDEF123', masked)
        self.assertNotIn('4821', masked)
        self.assertIn('********', masked)

    def test_non_strings_pass_through(self):
        self.assertEqual(PIIMasker.mask_text(42), 42)
        self.assertIsNone(PIIMasker.mask_text(None))

    def test_mask_dict_sensitive_fields(self):
        data = {
            'token_id': 'c0ffee',
            'raw_token': 'secret-value',
            'pin': '1234',
            'session_token': 'deadbeef',
            'reason_code': 'deny_missing_permission',
        }
        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['token_id'], 'c0ffee')
        self.assertEqual(masked['raw_token'], '********')
        self.assertEqual(masked['pin'], '********')
        self.assertEqual(masked['session_token'], '********')
        self.assertEqual(masked['reason_code'], 'deny_missing_permission')

    def test_mask_nested_dict(self):
        data = {
            'account': {'email': 'sub@trade.com', 'password': 'hunter2hunter2'},
            'attempts': [{'pin': '0000'}, 'contact ops@acme.com'],
        }
        masked = PIIMasker.mask_dict(data)

        self.assertEqual(masked['account']['password'], '********')
        self.assertNotIn('sub@trade.com', masked['account']['email'])
        self.assertEqual(masked['attempts'][0]['pin'], '********')
        self.assertNotIn('ops@acme.com', masked['attempts'][1])

    def test_sanitizing_filter_masks_message(self):
        record = logging.LogRecord('apps', logging.INFO, __file__, 1, 'secret=abc123xyz', None, None)
        self.assertTrue(SanitizingFilter().filter(record))
        self.assertNotIn('abc123xyz', record.msg)


class JSONFormatterTestCase(TestCase):
    """Test JSON log formatting."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def _record(self, msg='Test message', **extra):
        record = logging.LogRecord('apps.rbac', logging.INFO, __file__, 10, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_log_format(self):
        data = json.loads(self.formatter.format(self._record()))

        self.assertEqual(data['level'], 'INFO')
        self.assertEqual(data['logger'], 'apps.rbac')
        self.assertEqual(data['message'], 'Test message')
        self.assertTrue(data['timestamp'].endswith('Z'))

    def test_log_with_request_and_actor(self):
        data = json.loads(self.formatter.format(self._record(request_id='req-1', actor_id='actor-9')))

        self.assertEqual(data['request_id'], 'req-1')
        self.assertEqual(data['actor_id'], 'actor-9')

    def test_sensitive_extra_fields_masked(self):
        data = json.loads(self.formatter.format(self._record(token='raw-portal-token', token_id='t-1')))

        self.assertEqual(data['token'], '********')
        self.assertEqual(data['token_id'], 't-1')

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(self.formatter.format(self._record(when=object())))

        self.assertIsInstance(data['when'], str)

    def test_exception_info_included(self):
        try:
            raise ValueError('boom')
        except ValueError:
            record = logging.LogRecord('apps', logging.ERROR, __file__, 1, 'failed', None, sys.exc_info())

        data = json.loads(self.formatter.format(record))
        self.assertEqual(data['exception']['type'], 'ValueError')


class SecurityLoggerTestCase(TestCase):
    """Test security event logging."""

    def test_authorization_denied_goes_to_security_logger(self):
        with self.assertLogs('security', level='INFO') as captured:
            SecurityLogger.log_authorization_denied(
                actor_id='a-1', permission='docs.read', reason_code='deny_missing_permission'
            )

        self.assertEqual(len(captured.records), 1)
        record = captured.records[0]
        self.assertEqual(record.event_type, 'authorization_denied')
        self.assertEqual(record.reason_code, 'deny_missing_permission')

    def test_invalid_credential_records_no_reason(self):
        with self.assertLogs('security', level='INFO') as captured:
            SecurityLogger.log_invalid_credential('signed_link', ip_address='10.0.0.1', path='/v1/links/{token}')

        record = captured.records[0]
        self.assertEqual(record.kind, 'signed_link')
        self.assertFalse(hasattr(record, 'reason'))

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_pin_lockout_alerts_sentry(self, capture_message):
        from django.utils import timezone

        with self.assertLogs('security', level='ERROR'):
            SecurityLogger.log_pin_lockout('token-1', timezone.now())

        capture_message.assert_called_once()

    @patch('apps.core.logging.sentry_sdk.capture_message')
    def test_failed_login_does_not_alert_sentry(self, capture_message):
        with self.assertLogs('security', level='WARNING') as captured:
            SecurityLogger.log_failed_external_login('sub@trade.com', reason='incorrect_password')

        capture_message.assert_not_called()
        self.assertNotIn('sub@trade.com', captured.records[0].email)
