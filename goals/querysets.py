from users.querysets import BaseUserOwnedModelQuerySet


class GoalQuerySet(BaseUserOwnedModelQuerySet):
    def active(self):
        return self.filter(is_deleted=False)

    def focused(self):
        return self.filter(vision__is_focus=True)
