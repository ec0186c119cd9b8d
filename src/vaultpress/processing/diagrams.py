"""Mermaid diagram rendering strategies."""

from __future__ import annotations

import base64
import html
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from vaultpress.errors import DiagramRenderError

logger = logging.getLogger(__name__)

MERMAID_CLI = "mmdc"


class DiagramRenderer(ABC):
    """Turns the source of a ``mermaid`` fence into an HTML fragment."""

    name: str = "diagram"

    @abstractmethod
    def render(self, source: str) -> str:
        """Return HTML for ``source`` or raise :class:`DiagramRenderError`."""


class PreMermaidRenderer(DiagramRenderer):
    """Leaves rendering to mermaid.js in the browser."""

    name = "pre-mermaid"

    def render(self, source: str) -> str:
        return f'<pre class="mermaid">{html.escape(source.strip())}</pre>'


class MermaidCliRenderer(DiagramRenderer):
    """Renders diagrams to SVG with the mermaid CLI (``mmdc``).

    ``inline-svg`` embeds the SVG markup, ``img-svg`` emits an ``<img>`` with a
    base64 data URI.
    """

    def __init__(self, strategy: str = "inline-svg", *, executable: str | None = None, timeout: float = 60.0) -> None:
        if strategy not in ("inline-svg", "img-svg"):
            raise ValueError(f"MermaidCliRenderer cannot produce '{strategy}'")
        self.name = strategy
        self.strategy = strategy
        self.executable = executable or shutil.which(MERMAID_CLI)
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.executable is not None

    def render(self, source: str) -> str:
        if not self.executable:
            raise DiagramRenderError(f"{MERMAID_CLI} not found on PATH")
        svg = self._run(source)
        if self.strategy == "img-svg":
            encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
            return f'<img class="mermaid-diagram" alt="Diagram" src="data:image/svg+xml;base64,{encoded}">'
        return f'<div class="mermaid-diagram">{svg}</div>'

    def _run(self, source: str) -> str:
        try:
            with tempfile.TemporaryDirectory(prefix="vaultpress-mermaid-") as tmp:
                input_path = Path(tmp) / "diagram.mmd"
                output_path = Path(tmp) / "diagram.svg"
                input_path.write_text(source, encoding="utf-8")
                subprocess.run(
                    [self.executable, "-i", str(input_path), "-o", str(output_path), "-b", "transparent"],
                    capture_output=True,
                    text=True,
                    check=True,
                    timeout=self.timeout,
                )
                if not output_path.exists():
                    raise DiagramRenderError("renderer produced no output")
                svg = output_path.read_text(encoding="utf-8")
        except subprocess.CalledProcessError as exc:
            message = (exc.stderr or exc.stdout or "").strip().splitlines()
            raise DiagramRenderError(message[-1] if message else f"exit status {exc.returncode}") from exc
        except (OSError, UnicodeError, subprocess.TimeoutExpired) as exc:
            raise DiagramRenderError(str(exc)) from exc
        start = svg.find("<svg")
        return svg[start:] if start >= 0 else svg


def create_renderer(strategy: str) -> DiagramRenderer:
    """Renderer for a configured strategy; a missing CLI is reported per diagram."""
    if strategy == "pre-mermaid":
        return PreMermaidRenderer()
    renderer = MermaidCliRenderer(strategy)
    if not renderer.available:
        logger.warning("%s not found; mermaid diagrams will be kept as code blocks", MERMAID_CLI)
    return renderer
