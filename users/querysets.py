from django.db.models.query import QuerySet


class BaseUserOwnedModelQuerySet(QuerySet):
    """
    Base QuerySet for models that are private to their owner.
    """

    def filter_by_user(self, user_id: int):
        """
        Filters the queryset by the specified owner.
        :param user_id: ID of the owning user.
        :return: Filtered QuerySet.
        """
        return self.filter(user_id=user_id)

    def exclude_by_user(self, user_id: int):
        """
        Excludes records belonging to the specified owner.
        :param user_id: ID of the user to exclude.
        :return: Filtered QuerySet.
        """
        return self.exclude(user_id=user_id)

    def update(self, **kwargs):
        if "user_id" in kwargs or "user" in kwargs:
            raise ValueError("`user` cannot be updated.")
        return super().update(**kwargs)
