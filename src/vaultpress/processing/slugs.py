"""Deterministic, collision-free slug allocation."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Literal, Sequence

from slugify import slugify

from vaultpress.issues import IssueCollector
from vaultpress.models import SlugInfo

LOGGER = logging.getLogger(__name__)

FALLBACK_SLUG = "untitled"


def normalize_slug(value: str) -> str:
    """URL-safe lowercase slug; never empty."""
    return slugify(str(value)) or FALLBACK_SLUG


@dataclass(slots=True)
class SlugRequest:
    path: str
    desired: str
    content_hash: str = ""
    explicit: bool = False


class SlugAllocator:
    """Assigns each document a unique final slug.

    Explicit (frontmatter) slugs are reserved before derived ones; within each
    group the first request in traversal order keeps the bare slug and later
    ones are disambiguated. The result depends only on the input order.
    """

    def __init__(
        self,
        strategy: Literal["number", "hash"] = "number",
        issues: IssueCollector | None = None,
    ) -> None:
        self.strategy = strategy
        self.issues = issues
        self.used: Dict[str, str] = {}
        self.assigned: Dict[str, SlugInfo] = {}
        self._groups: Dict[str, List[str]] = {}
        self._hashes: Dict[str, str] = {}

    def allocate(self, requests: Sequence[SlugRequest]) -> Dict[str, SlugInfo]:
        ordered = [r for r in requests if r.explicit] + [r for r in requests if not r.explicit]
        for request in ordered:
            self._assign(request)
        LOGGER.debug("Allocated %d slugs", len(self.assigned))
        return {r.path: self.assigned[r.path] for r in requests}

    def _assign(self, request: SlugRequest) -> SlugInfo:
        desired = normalize_slug(request.desired)
        group = self._groups.setdefault(desired, [])
        final = desired
        if desired in self.used and self.used[desired] != request.path:
            final = self._disambiguate(desired, request.path)
            if self.issues is not None:
                self.issues.add_slug_conflict(
                    file_path=request.path,
                    original_slug=desired,
                    final_slug=final,
                    conflicting_files=list(group),
                )
        group.append(request.path)

        info = SlugInfo(
            desired=desired,
            disambiguated=final,
            final=final,
            is_disambiguated=final != desired,
        )
        self.assigned[request.path] = info
        if request.content_hash:
            self._hashes[request.path] = request.content_hash
        self.used[final] = request.path
        return info

    def _disambiguate(self, base: str, path: str) -> str:
        if self.strategy == "hash":
            candidate = f"{base}-{hashlib.sha256(path.encode('utf-8')).hexdigest()[:8]}"
            if candidate not in self.used:
                return candidate
        counter = 2
        while f"{base}{counter}" in self.used:
            counter += 1
        return f"{base}{counter}"

    def table(self) -> Dict[str, object]:
        """Slug tracking data: every assignment, the used-slug index and source hashes."""
        return {
            "all_slugs": {path: info.to_dict() for path, info in self.assigned.items()},
            "used_slugs": dict(self.used),
            "content_hashes": dict(self._hashes),
        }
