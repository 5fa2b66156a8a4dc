from goals.querysets import GoalQuerySet
from users.managers import BaseUserOwnedModelManager


class GoalManager(BaseUserOwnedModelManager):
    def get_queryset(self):
        return GoalQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()
