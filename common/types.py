from typing import TypedDict

from rest_framework.viewsets import GenericViewSet, ViewSet, ViewSetMixin


class RouteDict(TypedDict):
    """
    A router registration: URL prefix, the viewset it serves and the basename for URL names.
    """

    regex: str
    viewset: type[GenericViewSet] | type[ViewSet] | type[ViewSetMixin]
    basename: str
