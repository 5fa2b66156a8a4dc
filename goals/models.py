from django.db import models

from common.models import SoftDeleteModel
from goals.managers import GoalManager
from users.models import UserOwnedModel


class LifeVision(UserOwnedModel):
    """
    A long term vision the user's goals roll up to. Task lists can be filtered down to
    the items whose lineage ends in a focused vision.
    """

    title = models.CharField(max_length=255)
    is_focus = models.BooleanField(
        default=False, help_text="Focused visions are highlighted in occurrence lists"
    )

    def __str__(self):
        return self.title


class Goal(SoftDeleteModel, UserOwnedModel):
    title = models.CharField(max_length=255)
    vision = models.ForeignKey(
        LifeVision,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="goals",
    )

    objects: GoalManager = GoalManager()

    def __str__(self):
        return self.title

    @property
    def is_focused(self) -> bool:
        return self.vision is not None and self.vision.is_focus
