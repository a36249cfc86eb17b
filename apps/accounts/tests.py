from django.core import mail
from django.test import TestCase
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework import status

from .store import users
from apps.payments.exceptions import RecordNotFound

User = get_user_model()

REGISTER_URL = '/api/auth/register/'
LOGIN_URL = '/api/auth/login/'
USER_URL = '/api/auth/user/'
CHANGE_PASSWORD_URL = '/api/auth/change-password/'


def create_user(**kwargs):
    defaults = {
        'username': 'testuser',
        'email': 'test@example.com',
        'password': 'StrongPassword123!',
    }
    defaults.update(kwargs)
    return users.create_user(**defaults)


def register_payload(**kwargs):
    payload = {
        'username': 'newuser',
        'email': 'new@example.com',
        'password': 'StrongPassword123!',
        'confirmPassword': 'StrongPassword123!',
        'firstName': 'Jane',
        'lastName': 'Doe',
    }
    payload.update(kwargs)
    return payload


class UserStoreTests(TestCase):

    def test_create_user_defaults(self):
        user = create_user()
        self.assertEqual(user.plan, 'free')
        self.assertEqual(user.credits, 0)
        self.assertIsNone(user.external_billing_id)
        self.assertIsNotNone(user.created_at)

    def test_password_is_hashed(self):
        user = create_user()
        self.assertNotEqual(user.password, 'StrongPassword123!')
        self.assertTrue(user.check_password('StrongPassword123!'))

    def test_lookups_ignore_case(self):
        user = create_user()
        self.assertEqual(users.get_user_by_username('TESTUSER').pk, user.pk)
        self.assertEqual(users.get_user_by_email('Test@Example.COM').pk, user.pk)
        self.assertIsNone(users.get_user_by_username('nobody'))

    def test_update_user_merges_fields(self):
        user = create_user()
        updated = users.update_user(user.pk, first_name='Ada', credits=5)
        self.assertEqual(updated.first_name, 'Ada')
        self.assertEqual(updated.credits, 5)
        self.assertEqual(updated.email, 'test@example.com')

    def test_update_unknown_user(self):
        with self.assertRaises(RecordNotFound):
            users.update_user(9999, first_name='Ghost')

    def test_set_external_billing_id(self):
        user = create_user()
        users.set_external_billing_id(user.pk, 'cus_123')
        user.refresh_from_db()
        self.assertEqual(user.external_billing_id, 'cus_123')


class AuthRegistrationTests(TestCase):

    def setUp(self):
        self.client = APIClient()

    def test_register_success(self):
        res = self.client.post(REGISTER_URL, register_payload())
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data['user']['username'], 'newuser')
        self.assertEqual(res.data['user']['firstName'], 'Jane')
        self.assertEqual(res.data['user']['plan'], 'free')
        self.assertNotIn('password', res.data['user'])
        self.assertIn('access', res.data['tokens'])
        self.assertIn('refresh', res.data['tokens'])

    def test_register_sends_welcome_email(self):
        self.client.post(REGISTER_URL, register_payload())
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['new@example.com'])

    def test_register_duplicate_username(self):
        create_user(username='taken', email='first@example.com')
        res = self.client.post(REGISTER_URL, register_payload(username='TAKEN'))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('username', res.data)
        self.assertEqual(User.objects.count(), 1)

    def test_register_duplicate_email(self):
        create_user(email='dup@example.com', username='dup1')
        res = self.client.post(REGISTER_URL, register_payload(email='DUP@example.com', username='dup2'))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('email', res.data)
        self.assertEqual(User.objects.count(), 1)

    def test_register_password_mismatch(self):
        res = self.client.post(REGISTER_URL, register_payload(confirmPassword='WrongPassword456!'))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('confirmPassword', res.data)
        self.assertFalse(User.objects.exists())

    def test_register_short_password(self):
        res = self.client.post(REGISTER_URL, register_payload(password='abc', confirmPassword='abc'))
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


class AuthLoginTests(TestCase):

    def setUp(self):
        self.client = APIClient()

    def test_register_then_login_returns_same_user(self):
        registered = self.client.post(REGISTER_URL, register_payload())
        res = self.client.post(LOGIN_URL, {
            'username': 'newuser',
            'password': 'StrongPassword123!',
        })
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['user']['id'], registered.data['user']['id'])
        self.assertIn('tokens', res.data)

    def test_login_username_is_case_insensitive(self):
        user = create_user()
        res = self.client.post(LOGIN_URL, {'username': 'TestUser', 'password': 'StrongPassword123!'})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['user']['id'], user.pk)

    def test_login_wrong_password(self):
        create_user()
        res = self.client.post(LOGIN_URL, {
            'username': 'testuser',
            'password': 'WrongPassword!',
        })
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_login_unknown_user(self):
        res = self.client.post(LOGIN_URL, {'username': 'ghost', 'password': 'whatever'})
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_login_missing_fields(self):
        res = self.client.post(LOGIN_URL, {'username': 'testuser'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)


class CurrentUserTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = create_user()

    def test_user_requires_identity(self):
        res = self.client.get(USER_URL)
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_user_by_query_param(self):
        res = self.client.get(f'{USER_URL}?userId={self.user.pk}')
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['user']['email'], self.user.email)

    def test_unknown_user_id_is_rejected(self):
        res = self.client.get(f'{USER_URL}?userId=9999')
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_malformed_user_id_is_rejected(self):
        res = self.client.get(f'{USER_URL}?userId=abc')
        self.assertEqual(res.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_user_by_bearer_token(self):
        login = self.client.post(LOGIN_URL, {'username': 'testuser', 'password': 'StrongPassword123!'})
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['tokens']['access']}")
        res = self.client.get(USER_URL)
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['user']['id'], self.user.pk)

    def test_update_profile(self):
        res = self.client.patch(f'{USER_URL}?userId={self.user.pk}', {'firstName': 'Grace', 'lastName': 'Hopper'})
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data['user']['firstName'], 'Grace')
        self.user.refresh_from_db()
        self.assertEqual(self.user.last_name, 'Hopper')

    def test_update_profile_email_taken(self):
        create_user(username='other', email='other@example.com')
        res = self.client.patch(f'{USER_URL}?userId={self.user.pk}', {'email': 'OTHER@example.com'})
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_plan_and_credits_are_read_only(self):
        self.client.patch(f'{USER_URL}?userId={self.user.pk}', {'plan': 'pro', 'credits': 100})
        self.user.refresh_from_db()
        self.assertEqual(self.user.plan, 'free')
        self.assertEqual(self.user.credits, 0)

    def test_change_password(self):
        res = self.client.post(f'{CHANGE_PASSWORD_URL}?userId={self.user.pk}', {
            'currentPassword': 'StrongPassword123!',
            'newPassword': 'EvenStronger456!',
        })
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('EvenStronger456!'))

    def test_change_password_wrong_current(self):
        res = self.client.post(f'{CHANGE_PASSWORD_URL}?userId={self.user.pk}', {
            'currentPassword': 'nope',
            'newPassword': 'EvenStronger456!',
        })
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
