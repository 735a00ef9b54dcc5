"""
Config Materializer

Renders stage outputs into the input files of the next consumer (tfvars,
backend config, Ansible inventory). Templates use plain ``{{ name }}``
interpolation; every placeholder must be bound and files are replaced
atomically so a crash never leaves a half-written input behind.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, meta

from stackup.exceptions import UnboundPlaceholder

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


@dataclass
class RenderedText:
    """Result of rendering one template."""

    text: str
    placeholders: List[str] = field(default_factory=list)
    unused_bindings: List[str] = field(default_factory=list)


class ConfigMaterializer:
    """Renders templates with strict placeholder checking and writes them atomically."""

    def __init__(self, templates_dir: Optional[Path] = None, logger=None):
        """
        Initialize materializer.

        Args:
            templates_dir: Directory holding *.j2 templates
            logger: Optional DeployLogger for warnings
        """
        self.templates_dir = Path(templates_dir or TEMPLATES_DIR)
        self.logger = logger
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def _source(self, template: str) -> str:
        source, _, _ = self.env.loader.get_source(self.env, template)
        return source

    def placeholders(self, template: str) -> List[str]:
        """Names of every variable the template interpolates."""
        ast = self.env.parse(self._source(template))
        return sorted(meta.find_undeclared_variables(ast))

    def render(
        self,
        template: str,
        bindings: Mapping[str, Any],
        stage: Optional[str] = None,
    ) -> RenderedText:
        """
        Render a template.

        Args:
            template: Template file name, relative to templates_dir
            bindings: Placeholder values
            stage: Consumer name, for error reporting

        Returns:
            RenderedText with the text and any unused bindings

        Raises:
            UnboundPlaceholder: If any placeholder has no value
        """
        placeholders = self.placeholders(template)
        unbound = [name for name in placeholders if name not in bindings]
        if unbound:
            raise UnboundPlaceholder(template, unbound, stage=stage)

        unused = sorted(set(bindings) - set(placeholders))
        if unused and self.logger:
            self.logger.warning(
                f"{template}: unused binding(s) {', '.join(unused)}"
            )

        text = self.env.get_template(template).render(**bindings)
        return RenderedText(text=text, placeholders=placeholders, unused_bindings=unused)

    def write(self, path: Union[str, Path], text: str, mode: int = 0o644) -> bool:
        """
        Atomically replace path with text.

        Returns:
            False if the file already had exactly this content
        """
        path = Path(path)
        if path.exists() and path.read_text() == text:
            return False

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        if self.logger:
            self.logger.log(f"Wrote {path}")
        return True

    def materialize(
        self,
        template: str,
        bindings: Dict[str, Any],
        path: Union[str, Path],
        stage: Optional[str] = None,
    ) -> RenderedText:
        """Render then write; nothing is written if rendering fails."""
        rendered = self.render(template, bindings, stage=stage)
        self.write(path, rendered.text)
        return rendered
