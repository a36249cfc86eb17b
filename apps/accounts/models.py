from django.contrib.auth.models import AbstractUser, UserManager as BaseUserManager
from django.db import models
from django.db.models.functions import Lower


class UserManager(BaseUserManager):

    def get_by_natural_key(self, username):
        # Usernames are matched case-insensitively at login.
        return self.get(**{f'{self.model.USERNAME_FIELD}__iexact': username})


class User(AbstractUser):
    """
    Storefront customer account.
    Username and email are unique ignoring case. The Stripe customer id
    is attached lazily, the first time the user saves a card.
    """
    PLAN_FREE = 'free'

    email = models.EmailField(unique=True)
    external_billing_id = models.CharField(max_length=255, blank=True, null=True, db_index=True)
    plan = models.CharField(max_length=50, default=PLAN_FREE)
    credits = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    REQUIRED_FIELDS = ['email']

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(Lower('username'), name='users_username_ci_unique'),
            models.UniqueConstraint(Lower('email'), name='users_email_ci_unique'),
        ]

    def __str__(self):
        return self.username

    @property
    def full_name(self):
        return self.get_full_name() or self.username
