from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from .models import User


@override_settings(CAMPUS_EMAIL_DOMAIN='campus.edu')
class AuthApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def register(self, **overrides):
        body = {
            'email': 'asha@campus.edu',
            'password': 'pass12345',
            'full_name': 'Asha Verma',
            'department': 'CSE',
        }
        body.update(overrides)
        return self.client.post('/api/auth/register/', body, format='json')

    def test_register_returns_profile_and_tokens(self):
        response = self.register()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['user']['username'], 'asha')
        self.assertEqual(response.data['user']['rating'], '5.0')
        self.assertIn('access', response.data['tokens'])
        self.assertTrue(User.objects.get(email='asha@campus.edu').check_password('pass12345'))

    def test_register_rejects_other_domains(self):
        response = self.register(email='asha@gmail.com')

        self.assertEqual(response.status_code, 400)
        self.assertIn('email', response.data)
        self.assertFalse(User.objects.exists())

    def test_register_rejects_duplicate_email(self):
        self.register()
        response = self.register(username='asha2')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(User.objects.count(), 1)

    def test_login_with_email_or_username(self):
        self.register()

        by_email = self.client.post('/api/auth/login/', {'email': 'asha@campus.edu', 'password': 'pass12345'}, format='json')
        by_username = self.client.post('/api/auth/login/', {'username': 'asha', 'password': 'pass12345'}, format='json')
        wrong = self.client.post('/api/auth/login/', {'username': 'asha', 'password': 'nope'}, format='json')

        self.assertEqual(by_email.status_code, 200)
        self.assertEqual(by_username.data['user']['email'], 'asha@campus.edu')
        self.assertEqual(wrong.status_code, 400)

    def test_refresh_and_me(self):
        tokens = self.register().data['tokens']

        refreshed = self.client.post('/api/auth/refresh/', {'refresh': tokens['refresh']}, format='json')
        self.assertEqual(refreshed.status_code, 200)

        self.client.credentials(HTTP_AUTHORIZATION='Bearer ' + refreshed.data['access'])
        me = self.client.get('/api/auth/me/')
        self.assertEqual(me.data['full_name'], 'Asha Verma')

        patched = self.client.patch('/api/auth/me/', {'bio': 'Weekend trips home', 'rating': 5}, format='json')
        self.assertEqual(patched.data['bio'], 'Weekend trips home')
        self.assertEqual(patched.data['rating'], '5.0')

    def test_invalid_refresh_token(self):
        response = self.client.post('/api/auth/refresh/', {'refresh': 'garbage'}, format='json')
        self.assertEqual(response.status_code, 401)
