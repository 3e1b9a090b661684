"""Client-side storage for the access/refresh token pair.

``MemoryTokenStorage`` keeps credentials for the life of the process;
``FileTokenStorage`` persists them as JSON so a restarted client stays
signed in.
"""

import json
from pathlib import Path
from typing import Any, Optional, Protocol

from makeit_auth.core.logging import logger


class TokenStorage(Protocol):
    def get_access_token(self) -> Optional[str]: ...

    def get_refresh_token(self) -> Optional[str]: ...

    def get_user(self) -> Optional[dict[str, Any]]: ...

    def save(
        self,
        access_token: str,
        refresh_token: str,
        user: Optional[dict[str, Any]] = None,
    ) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStorage:
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get_access_token(self) -> Optional[str]:
        return self._data.get("access_token")

    def get_refresh_token(self) -> Optional[str]:
        return self._data.get("refresh_token")

    def get_user(self) -> Optional[dict[str, Any]]:
        return self._data.get("user")

    def save(self, access_token, refresh_token, user=None) -> None:
        self._data = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "user": user if user is not None else self._data.get("user"),
        }

    def clear(self) -> None:
        self._data = {}


class FileTokenStorage:
    """JSON file holding ``access_token``, ``refresh_token`` and ``user``.

    The file is rewritten through a temporary sibling and renamed into
    place so a crash never leaves half a token pair behind.
    """

    def __init__(self, path) -> None:
        self._path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable token file {}", self._path)
            return {}

    def get_access_token(self) -> Optional[str]:
        return self._load().get("access_token")

    def get_refresh_token(self) -> Optional[str]:
        return self._load().get("refresh_token")

    def get_user(self) -> Optional[dict[str, Any]]:
        return self._load().get("user")

    def save(self, access_token, refresh_token, user=None) -> None:
        if user is None:
            user = self._load().get("user")
        data = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "user": user,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        tmp_path.replace(self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
