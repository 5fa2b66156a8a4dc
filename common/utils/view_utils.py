from rest_framework import generics, mixins
from rest_framework.viewsets import ViewSetMixin


class FilterOnlyOnListMixin:
    def filter_queryset(self, queryset):
        if self.action != "list":
            return queryset
        return super().filter_queryset(queryset)


class ServiceWriteModelViewSet(
    ViewSetMixin,
    FilterOnlyOnListMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    mixins.DestroyModelMixin,
    generics.GenericAPIView,
):
    """
    A viewset that provides `retrieve()`, `list()` and `destroy()` for planner models.
    Writes go through the service layer, so subclasses implement `create()` and the
    write actions themselves instead of relying on model serializers.
    """

    lookup_value_regex = r"\d+"
    lookup_value_converter = "int"

    def get_read_serializer(self, *args, **kwargs):
        serializer_class = self.get_serializer_class()
        kwargs["context"] = self.get_serializer_context()
        return serializer_class(*args, **kwargs)
