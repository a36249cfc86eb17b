"""
User repository.

Views and services go through UserStore instead of the ORM so lookups,
id assignment and defaults stay in one place.
"""
import logging

from django.contrib.auth import get_user_model

from apps.payments.exceptions import RecordNotFound

logger = logging.getLogger(__name__)

UPDATABLE_USER_FIELDS = ('first_name', 'last_name', 'email', 'plan', 'credits', 'external_billing_id')


class UserStore:

    @property
    def model(self):
        return get_user_model()

    def get_user(self, user_id):
        return self.model.objects.filter(pk=user_id).first()

    def get_user_by_username(self, username):
        return self.model.objects.filter(username__iexact=username).first()

    def get_user_by_email(self, email):
        return self.model.objects.filter(email__iexact=email).first()

    def create_user(self, username, email, password, **extra_fields):
        """
        Persist a new account with a hashed password.
        Callers must check username/email collisions beforehand.
        """
        extra_fields.setdefault('plan', self.model.PLAN_FREE)
        extra_fields.setdefault('credits', 0)
        extra_fields['external_billing_id'] = None
        user = self.model.objects.create_user(
            username=username,
            email=email,
            password=password,
            **extra_fields,
        )
        logger.info(f"[Accounts] Created user {user.pk} ({user.username})")
        return user

    def update_user(self, user_id, **changes):
        user = self.get_user(user_id)
        if user is None:
            raise RecordNotFound(f"User with id {user_id} not found")

        unknown = set(changes) - set(UPDATABLE_USER_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")

        for field, value in changes.items():
            setattr(user, field, value)
        user.save(update_fields=[*changes, 'updated_at'])
        return user

    def set_external_billing_id(self, user_id, billing_id):
        return self.update_user(user_id, external_billing_id=billing_id)


users = UserStore()
