import itertools

from model_bakery import baker

from users.models import User


DEFAULT_TEST_USER_PASSWORD = "123456"  # noqa: S105

_user_sequence = itertools.count(1)


class UserFactory:
    def create_user(self, is_seed_data=False, **kwargs) -> User:
        try:
            return User.objects.get(email=kwargs.get("email", ""))
        except User.DoesNotExist:
            pass

        user = baker.prepare(
            User,
            email=kwargs.get("email", f"user{next(_user_sequence)}@example.com"),
            first_name=kwargs.get("first_name", ""),
            last_name=kwargs.get("last_name", ""),
        )
        user.set_password(kwargs.get("password", DEFAULT_TEST_USER_PASSWORD))

        # Add seed data flag to meta field
        if is_seed_data:
            user.meta = {"is_seed_data": True}

        user.save()
        return user
