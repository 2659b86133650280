"""Prompt template registry with variable injection and versioning."""
from __future__ import annotations
from pathlib import Path
import hashlib

TEMPLATES_DIR = Path(__file__).parent / "templates"


class PromptRegistry:
    """Manages prompt templates with variable injection and versioning."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self._templates_dir = templates_dir
        self._cache: dict[str, str] = {}
        self._hashes: dict[str, str] = {}

    def load_template(self, name: str) -> str:
        """Load a prompt template by name (e.g., 'vat_extraction')."""
        if name not in self._cache:
            path = self._templates_dir / f"{name}.md"
            if not path.exists():
                raise FileNotFoundError(f"Prompt template not found: {path}")
            self._cache[name] = path.read_text(encoding="utf-8").strip()
        return self._cache[name]

    def render(self, template_name: str, variables: dict | None = None) -> str:
        """Render a prompt template with ``{placeholder}`` substitution.

        Only the given keys are replaced, so literal braces in JSON examples
        survive rendering.
        """
        template = self.load_template(template_name)
        if variables:
            for key, value in variables.items():
                template = template.replace(f"{{{key}}}", str(value))
        return template

    def get_hash(self, template_name: str) -> str:
        """Get SHA-256 hash of a template (for reproducibility tracking)."""
        if template_name not in self._hashes:
            content = self.load_template(template_name)
            self._hashes[template_name] = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        return self._hashes[template_name]

    def get_version(self, template_name: str) -> str:
        """Get version string for a template (hash-based)."""
        return f"v1.0-{self.get_hash(template_name)[:8]}"

    def clear_cache(self):
        """Clear the template cache (useful for reloading after edits)."""
        self._cache.clear()
        self._hashes.clear()
