"""
Manifest Renderer - Template documents to structured objects.

Evaluates a fixed set of Jinja2 template documents against a binding context
and parses each rendered document into a plain dict object. Documents are
processed in ascending lexicographic order of their path and a failure in any
document fails the whole batch.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError

logger = logging.getLogger(__name__)

YAML_SUFFIXES = ("yaml", "yml")
JSON_SUFFIXES = ("json",)
MANIFEST_FILE_SUFFIXES = YAML_SUFFIXES + JSON_SUFFIXES


class RenderError(Exception):
    """Base class for renderer failures."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class TemplateNotFoundError(RenderError):
    """A template document does not exist."""


class ManifestParseError(RenderError):
    """A rendered document is not a valid structured object."""


class TemplateEvaluationError(RenderError):
    """Template directives failed against the binding context."""


@dataclass
class TemplatingData:
    """Binding context for one render call plus optional helper functions."""

    data: Any
    funcs: Optional[Dict[str, Callable[..., Any]]] = field(default=None)


def to_plain(value: Any) -> Any:
    """Convert models and dataclasses into plain dicts/lists for serialization."""
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True, exclude_none=True)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def to_yaml(value: Any) -> str:
    """Serialize a value as block-style YAML without a trailing newline."""
    return yaml.safe_dump(
        to_plain(value), default_flow_style=False, sort_keys=False
    ).rstrip("\n")


def nindent(text: Any, width: int) -> str:
    """Prefix a newline and indent every line of text by width spaces."""
    pad = " " * width
    return "\n" + "\n".join(pad + line for line in str(text).splitlines())


def image_path(repository: str, image: str, version: str) -> str:
    """Build a container image reference, using '@' for sha256 digests."""
    separator = "@" if version.startswith("sha256:") else ":"
    return f"{repository}/{image}{separator}{version}"


def has_prefix(value: Any, prefix: str) -> bool:
    return str(value).startswith(prefix)


DEFAULT_FUNCS: Dict[str, Callable[..., Any]] = {
    "to_yaml": to_yaml,
    "nindent": nindent,
    "image_path": image_path,
    "has_prefix": has_prefix,
}


def get_files_with_suffix(base_dir: str, *suffixes: str) -> List[str]:
    """
    Collect files under base_dir (recursively) whose name ends with a suffix.

    Args:
        base_dir: Directory to walk
        suffixes: File suffixes without the leading dot

    Returns:
        Sorted list of file paths

    Raises:
        TemplateNotFoundError: If base_dir is not a directory
    """
    if not os.path.isdir(base_dir):
        raise TemplateNotFoundError("manifest directory does not exist", base_dir)

    endings = tuple(f".{s}" for s in suffixes)
    files = []
    for root, _dirs, names in os.walk(base_dir):
        for name in names:
            if name.endswith(endings):
                files.append(os.path.join(root, name))
    return sorted(files)


def new_renderer_from_dir(manifest_dir: str) -> "Renderer":
    """Build a Renderer over every manifest file in a directory."""
    return Renderer(get_files_with_suffix(manifest_dir, *MANIFEST_FILE_SUFFIXES))


def _context_from(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, Mapping):
        return dict(data)
    if is_dataclass(data) and not isinstance(data, type):
        return {f.name: getattr(data, f.name) for f in fields(data)}
    return dict(vars(data))


class Renderer:
    """
    Renders an immutable, pre-resolved list of template documents.

    The file list is sorted at construction so the output order never depends
    on how the caller enumerated the files.
    """

    def __init__(self, files: Iterable[str]):
        self._files = tuple(sorted(files))
        self._env = Environment(
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._env.filters.update(
            {"to_yaml": to_yaml, "nindent": nindent, "image_path": image_path}
        )

    @property
    def files(self) -> List[str]:
        return list(self._files)

    def render_objects(self, data: TemplatingData) -> List[Dict[str, Any]]:
        """
        Render all template documents into objects, in file order.

        Args:
            data: Binding context and helper functions

        Returns:
            Ordered list of rendered objects (empty when there are no files)

        Raises:
            TemplateNotFoundError: A document does not exist
            TemplateEvaluationError: Directives failed against the binding data
            ManifestParseError: A rendered document is malformed
        """
        objs: List[Dict[str, Any]] = []
        for path in self._files:
            objs.extend(self._render_file(path, data))
        logger.debug(f"Rendered {len(objs)} objects from {len(self._files)} files")
        return objs

    def _render_file(self, path: str, data: TemplatingData) -> List[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                source = f.read()
        except FileNotFoundError:
            raise TemplateNotFoundError("template document not found", path)
        except UnicodeDecodeError as e:
            raise ManifestParseError(f"template is not valid UTF-8: {e}", path)
        except OSError as e:
            raise TemplateNotFoundError(f"failed to read template: {e}", path)

        context = _context_from(data.data)
        template_globals = dict(DEFAULT_FUNCS)
        if data.funcs:
            template_globals.update(data.funcs)

        try:
            template = self._env.from_string(source, globals=template_globals)
            rendered = template.render(context)
        except TemplateError as e:
            raise TemplateEvaluationError(str(e), path)
        except Exception as e:
            # Helper functions may raise anything
            raise TemplateEvaluationError(
                f"failed to evaluate template: {type(e).__name__}: {e}", path
            ) from e

        return self._parse(path, rendered)

    def _parse(self, path: str, rendered: str) -> List[Dict[str, Any]]:
        if path.endswith(tuple(f".{s}" for s in JSON_SUFFIXES)):
            if not rendered.strip():
                return []
            try:
                docs = [json.loads(rendered)]
            except json.JSONDecodeError as e:
                raise ManifestParseError(f"invalid JSON: {e}", path)
        elif path.endswith(tuple(f".{s}" for s in YAML_SUFFIXES)):
            try:
                docs = [d for d in yaml.safe_load_all(rendered) if d is not None]
            except yaml.YAMLError as e:
                raise ManifestParseError(f"invalid YAML: {e}", path)
        else:
            raise ManifestParseError("unsupported manifest file suffix", path)

        for doc in docs:
            if not isinstance(doc, dict):
                raise ManifestParseError(
                    f"expected an object, got {type(doc).__name__}", path
                )
            if not doc.get("apiVersion") or not doc.get("kind"):
                raise ManifestParseError("object is missing apiVersion or kind", path)
        return docs
