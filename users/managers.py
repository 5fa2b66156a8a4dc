from django.contrib.auth.models import BaseUserManager
from django.db.models import Manager

from common.exceptions import OwnerRequiredError
from users.querysets import BaseUserOwnedModelQuerySet


class UserManager(BaseUserManager):
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError("The given email must be set")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self._create_user(email, password, **extra_fields)


class BaseUserOwnedModelManager(Manager):
    """
    Base manager for models owned by a single user.
    This manager can be extended by the scheduling and goals models.
    """

    def get_queryset(self):
        return BaseUserOwnedModelQuerySet(self.model, using=self._db)

    def filter_by_user(self, user_id: int):
        """
        Filters the queryset by the specified owner.
        :param user_id: ID of the owning user.
        :return: Filtered queryset.
        """
        return self.get_queryset().filter_by_user(user_id)

    def create(self, **kwargs):
        """
        Override the create method to ensure every record has an owner.
        """
        if "user_id" not in kwargs and "user" not in kwargs:
            raise OwnerRequiredError()
        return super().create(**kwargs)
