from __future__ import annotations

import re
from collections.abc import Iterable


class TaskPrivilege:
    """Decides which cleaned task names may be registered."""

    def __init__(self, whitelist: Iterable[str] = (), blacklist: Iterable[str] = ()):
        self.whitelist = [re.compile(p) for p in whitelist]
        self.blacklist = [re.compile(p) for p in blacklist]

    def allowed(self, name: str) -> bool:
        if self.whitelist and not any(p.search(name) for p in self.whitelist):
            return False
        return not any(p.search(name) for p in self.blacklist)
