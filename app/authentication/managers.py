"""
Manager for the email-keyed marketplace User.
"""

from django.contrib.auth.models import BaseUserManager


class UserManager(BaseUserManager):
    """
    Usage:
        client = User.objects.create_user(email="client@example.com", password="pw")
        editor = User.objects.create_user(email="cut@example.com", role=UserRole.EDITOR)
        ops = User.objects.create_superuser(email="ops@example.com", password="pw")
    """

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Users need an email address")

        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        else:
            # Accounts created by admins or tests log in through JWT issuance only.
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Superusers are platform admins: they resolve disputes and run refunds."""
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", "admin")
        if not (extra_fields["is_staff"] and extra_fields["is_superuser"]):
            raise ValueError("A superuser needs is_staff and is_superuser")
        return self.create_user(email, password, **extra_fields)
