from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from model_utils.fields import AutoCreatedField, AutoLastModifiedField


class IndexedTimeStampedModel(models.Model):
    created = AutoCreatedField(_("created"), db_index=True)
    modified = AutoLastModifiedField(_("modified"), db_index=True)

    class Meta:
        abstract = True


class MetaJsonFieldModel(models.Model):
    meta = models.JSONField(_("meta"), default=dict, blank=True)

    class Meta:
        abstract = True


class BaseModel(IndexedTimeStampedModel, MetaJsonFieldModel):
    class Meta(IndexedTimeStampedModel.Meta, MetaJsonFieldModel.Meta):
        abstract = True


class SoftDeleteModel(models.Model):
    """
    Rows are flagged as deleted instead of being removed, so they can be restored
    during the recovery window.
    """

    is_deleted = models.BooleanField(_("is deleted"), default=False, db_index=True)
    deleted_at = models.DateTimeField(_("deleted at"), null=True, blank=True)

    class Meta:
        abstract = True

    def soft_delete(self, deleted_at=None, save=True):
        self.is_deleted = True
        self.deleted_at = deleted_at or timezone.now()
        if save:
            self.save(update_fields=["is_deleted", "deleted_at", "modified"])

    def restore(self, save=True):
        self.is_deleted = False
        self.deleted_at = None
        if save:
            self.save(update_fields=["is_deleted", "deleted_at", "modified"])
