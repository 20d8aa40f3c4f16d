from __future__ import annotations

import os
import stat
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .errors import TargetError


class ServeTarget(BaseModel):
    """The file or directory published by the server.

    Decided once at startup from a single stat call and never changed.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    is_directory: bool

    @classmethod
    def resolve(cls, raw_path: str) -> "ServeTarget":
        path = os.path.abspath(raw_path)
        try:
            st = os.stat(path)
        except OSError as e:
            raise TargetError(str(e)) from e
        return cls(path=path, is_directory=stat.S_ISDIR(st.st_mode))

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def served_path(self, url_path: str) -> Optional[str]:
        """Filesystem path a request for `url_path` was answered from.

        Returns None when the URL path points outside a directory target.
        """
        if not self.is_directory:
            return self.path
        relative = url_path.lstrip("/")
        joined = os.path.normpath(os.path.join(self.path, relative))
        if os.path.commonpath([joined, self.path]) != self.path:
            return None
        return joined
