# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from collections.abc import Iterator, Mapping
from typing import Any
import logging

from ..exceptions import UnknownPermissionKind
from ..protocol.messages import PERMISSION_KINDS


class PermissionSet(Mapping):
    """Grant state per permission kind. Every kind starts denied."""

    def __init__(self, initial: Mapping[str, bool] | None = None):
        self._grants: dict[str, bool] = dict.fromkeys(PERMISSION_KINDS, False)
        if initial:
            self.update(initial)

    @staticmethod
    def validate_kind(kind: Any) -> str:
        """Return ``kind`` if it is one of the enumerated kinds, else raise UnknownPermissionKind."""
        if not isinstance(kind, str) or kind not in PERMISSION_KINDS:
            logging.getLogger('negotiator').warning(f"rejecting unknown permission kind {kind!r}")
            raise UnknownPermissionKind(kind)
        return kind

    def set(self, kind: str, granted: bool) -> bool:
        """Record a grant state. Returns True if it changed."""
        self.validate_kind(kind)
        granted = bool(granted)
        changed = self._grants[kind] != granted
        self._grants[kind] = granted
        return changed

    def update(self, grants: Mapping[str, Any]) -> None:
        """Apply a snapshot, skipping kinds this side does not know."""
        for kind, granted in grants.items():
            if kind in self._grants:
                self._grants[kind] = bool(granted)
            else:
                logging.getLogger('negotiator').debug(f"ignoring unknown permission kind {kind!r} in snapshot")

    def snapshot(self) -> dict[str, bool]:
        return dict(self._grants)

    def __getitem__(self, kind: str) -> bool:
        return self._grants[kind]

    def __iter__(self) -> Iterator[str]:
        return iter(self._grants)

    def __len__(self) -> int:
        return len(self._grants)

    def __repr__(self):
        granted = [kind for kind, value in self._grants.items() if value]
        return f"PermissionSet(granted={granted})"
