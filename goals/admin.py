from django.contrib import admin

from goals.models import Goal, LifeVision


@admin.register(LifeVision)
class LifeVisionAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "user", "is_focus", "created")
    list_filter = ("is_focus",)
    search_fields = ("title", "user__email")


@admin.register(Goal)
class GoalAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "user", "vision", "is_deleted", "created")
    list_filter = ("is_deleted",)
    search_fields = ("title", "user__email")
    raw_id_fields = ("user", "vision")
