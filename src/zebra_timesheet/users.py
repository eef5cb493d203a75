from __future__ import annotations

import logging
from pathlib import Path

from .api import ZebraApi
from .errors import ConfigError, DeserializationError
from .models import Role, User
from .serialization import user_from_dict
from .storage import JsonFileStorage

logger = logging.getLogger(__name__)


class UserRepository:
    def __init__(
        self,
        api: ZebraApi,
        cache_dir: Path,
        *,
        user_id: int | None,
        default_role_id: int | None,
    ) -> None:
        self.api = api
        self.cache_dir = cache_dir
        self.user_id = user_id
        self.default_role_id = default_role_id

    def current_user(self) -> User | None:
        if self.user_id is None:
            return None
        return self.get(self.user_id)

    def get(self, user_id: int) -> User:
        cache = self._cache(user_id)
        data = cache.read()
        if data:
            try:
                return user_from_dict(data)
            except DeserializationError as exc:
                logger.debug("Discarding unreadable user cache %s: %s", cache.path, exc)
        return self.refresh(user_id)

    def refresh(self, user_id: int | None = None) -> User:
        user_id = self.user_id if user_id is None else user_id
        if user_id is None:
            raise ConfigError("No user configured. Run 'zebra config set user.id <id>'.")
        data = self.api.fetch_user_by_id(user_id)
        self._cache(user_id).write(data)
        return user_from_dict(data)

    def default_role(self) -> Role | None:
        if self.default_role_id is None:
            return None
        user = self.current_user()
        if user is None:
            return None
        return user.find_role(self.default_role_id)

    def roles(self) -> list[Role]:
        user = self.current_user()
        return list(user.roles) if user is not None else []

    def find_roles(self, text: str) -> list[Role]:
        user = self.current_user()
        return user.find_roles_by_name(text) if user is not None else []

    def _cache(self, user_id: int) -> JsonFileStorage:
        return JsonFileStorage(self.cache_dir / f"user_{user_id}.json")
