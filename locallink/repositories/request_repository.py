"""Product request repository."""
from __future__ import annotations

from locallink.core.exceptions import RequestNotFound
from locallink.domain.entities import ProductRequest
from locallink.domain.value_objects import Collection

from .base import BaseRepository


class RequestRepository(BaseRepository[ProductRequest]):
    collection = Collection.REQUESTS
    model = ProductRequest
    not_found = RequestNotFound
