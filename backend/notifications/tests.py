from unittest.mock import patch

from django.test import TestCase

from accounts.models import User
from .models import Notification
from .services import notify_user, notify_users


class NotifyUserTests(TestCase):
    def setUp(self):
        self.alice = User.objects.create_user(username='alice', password='pass1234')
        self.bob = User.objects.create_user(username='bob', password='pass1234')

    def test_creates_unread_notification(self):
        notification = notify_user(self.alice.id, 'Booking Confirmed!', 'See you at 9', type='booking', data={'booking_id': 4})

        self.assertFalse(notification.is_read)
        self.assertEqual(notification.data, {'booking_id': 4})

    def test_missing_recipient_is_skipped(self):
        self.assertIsNone(notify_user(None, 'Hi', 'Hi'))
        self.assertFalse(Notification.objects.exists())

    def test_failure_is_logged_not_raised(self):
        with patch.object(Notification.objects, 'create', side_effect=RuntimeError('db down')):
            with self.assertLogs('notifications.services', level='ERROR'):
                self.assertIsNone(notify_user(self.alice.id, 'Hi', 'Hi'))

    def test_notify_users_counts_created(self):
        self.assertEqual(notify_users([self.alice.id, None, self.bob.id], 'Ride Cancelled', 'Sorry'), 2)
