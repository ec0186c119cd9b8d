"""Structured issue collection for a build.

Every per-item failure in the pipeline is converted into an :class:`Issue`
instead of aborting the run. The collector is append-only and safe to use
from worker threads; ordering across items is not guaranteed.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List

LOGGER = logging.getLogger(__name__)


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    PARSE_ERROR = "parse-error"
    BROKEN_LINK = "broken-link"
    MISSING_MEDIA = "missing-media"
    MEDIA_PROCESSING = "media-processing"
    SLUG_CONFLICT = "slug-conflict"
    DIAGRAM_RENDER_ERROR = "diagram-render-error"
    FRONTMATTER_AMBIGUOUS = "frontmatter-ambiguous"
    CONFIGURATION = "configuration"


class IssueModule(str, Enum):
    MARKDOWN_PARSER = "markdown-parser"
    IMAGE_PROCESSOR = "image-processor"
    DIAGRAM_RENDERER = "diagram-renderer"
    LINK_RESOLVER = "link-resolver"
    SLUG_GENERATOR = "slug-generator"
    FRONTMATTER_PARSER = "frontmatter-parser"
    FILE_SYSTEM = "file-system"
    CONFIG_VALIDATOR = "config-validator"
    EMBEDDING = "embedding"


_LOG_LEVELS = {
    IssueSeverity.ERROR: logging.ERROR,
    IssueSeverity.WARNING: logging.WARNING,
    IssueSeverity.INFO: logging.DEBUG,
}


@dataclass(slots=True)
class Issue:
    """A single problem found while processing the vault."""

    severity: IssueSeverity
    category: IssueCategory
    module: IssueModule
    message: str
    file_path: str | None = None
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["category"] = self.category.value
        data["module"] = self.module.value
        return data


class IssueCollector:
    """Thread-safe, append-only log of processing issues."""

    def __init__(self) -> None:
        self._issues: List[Issue] = []
        self._lock = threading.Lock()
        self.started_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds")

    def __len__(self) -> int:
        return len(self._issues)

    @property
    def issues(self) -> List[Issue]:
        with self._lock:
            return list(self._issues)

    def add(
        self,
        severity: IssueSeverity,
        category: IssueCategory,
        module: IssueModule,
        message: str,
        *,
        file_path: str | None = None,
        **context: Any,
    ) -> Issue:
        issue = Issue(
            severity=severity,
            category=category,
            module=module,
            message=message,
            file_path=file_path,
            context=context,
        )
        with self._lock:
            self._issues.append(issue)
        LOGGER.log(_LOG_LEVELS[severity], "%s: %s", file_path or "-", message)
        return issue

    def add_broken_link(
        self, *, file_path: str, link_text: str, link_target: str, link_type: str = "wiki"
    ) -> Issue:
        return self.add(
            IssueSeverity.ERROR,
            IssueCategory.BROKEN_LINK,
            IssueModule.LINK_RESOLVER,
            f"Broken {link_type} link to '{link_target}'",
            file_path=file_path,
            link_text=link_text,
            link_target=link_target,
            link_type=link_type,
        )

    def add_missing_media(
        self,
        *,
        file_path: str,
        media_path: str,
        referenced_from: str = "content",
        original_reference: str | None = None,
    ) -> Issue:
        return self.add(
            IssueSeverity.WARNING,
            IssueCategory.MISSING_MEDIA,
            IssueModule.IMAGE_PROCESSOR,
            f"Media not found: {media_path}",
            file_path=file_path,
            media_path=media_path,
            referenced_from=referenced_from,
            original_reference=original_reference,
        )

    def add_media_error(self, *, media_path: str, operation: str, error: BaseException) -> Issue:
        return self.add(
            IssueSeverity.ERROR,
            IssueCategory.MEDIA_PROCESSING,
            IssueModule.IMAGE_PROCESSOR,
            f"Failed to {operation} {media_path}: {error}",
            file_path=media_path,
            media_path=media_path,
            operation=operation,
            error_message=str(error),
        )

    def add_slug_conflict(
        self, *, file_path: str, original_slug: str, final_slug: str, conflicting_files: List[str]
    ) -> Issue:
        return self.add(
            IssueSeverity.WARNING,
            IssueCategory.SLUG_CONFLICT,
            IssueModule.SLUG_GENERATOR,
            f"Slug '{original_slug}' already taken, using '{final_slug}'",
            file_path=file_path,
            original_slug=original_slug,
            final_slug=final_slug,
            conflicting_files=conflicting_files,
        )

    def add_diagram_error(
        self, *, file_path: str, error_type: str, error: BaseException | str, diagram: str = ""
    ) -> Issue:
        return self.add(
            IssueSeverity.WARNING,
            IssueCategory.DIAGRAM_RENDER_ERROR,
            IssueModule.DIAGRAM_RENDERER,
            f"Diagram rendering failed ({error_type}): {error}",
            file_path=file_path,
            error_type=error_type,
            diagram_content=diagram[:500],
            fallback="code-block",
        )

    def filter(
        self,
        *,
        severity: IssueSeverity | None = None,
        category: IssueCategory | None = None,
        file_path: str | None = None,
    ) -> List[Issue]:
        return [
            issue
            for issue in self.issues
            if (severity is None or issue.severity == severity)
            and (category is None or issue.category == category)
            and (file_path is None or issue.file_path == file_path)
        ]

    def report(self, *, include_aggregates: bool = False) -> Dict[str, Any]:
        """Return the issue log with summary counts and optional groupings."""
        issues = self.issues
        severities = Counter(issue.severity.value for issue in issues)
        report: Dict[str, Any] = {
            "issues": [issue.to_dict() for issue in issues],
            "summary": {
                "total_issues": len(issues),
                "error_count": severities.get("error", 0),
                "warning_count": severities.get("warning", 0),
                "info_count": severities.get("info", 0),
                "files_affected": len({i.file_path for i in issues if i.file_path}),
                "category_counts": dict(Counter(i.category.value for i in issues)),
                "module_counts": dict(Counter(i.module.value for i in issues)),
            },
            "metadata": {
                "process_start_time": self.started_at,
                "process_end_time": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            },
        }
        if include_aggregates:
            report["by_file"] = _group(issues, lambda i: i.file_path or "")
            report["by_severity"] = _group(issues, lambda i: i.severity.value)
            report["by_category"] = _group(issues, lambda i: i.category.value)
            report["by_module"] = _group(issues, lambda i: i.module.value)
        return report


def _group(issues: Iterable[Issue], key) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for issue in issues:
        grouped[key(issue)].append(issue.to_dict())
    return dict(grouped)
