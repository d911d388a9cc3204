"""
Semantic convention catalog.

Entries come from the ``opentelemetry-semantic-conventions`` package (the
stable ``opentelemetry.semconv.metrics`` modules and, optionally, the
incubating ones) and from an optional YAML file:

    conventions:
      - name: app.queue.depth
        instrument: gauge
        stability: internal
"""

from __future__ import annotations

import ast
import importlib
import pkgutil
import re
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Iterable, Iterator, Mapping

import structlog
import yaml

from metricatlas.core.errors import CatalogLoadError
from metricatlas.domain.models import InstrumentType, SemanticConventionEntry
from metricatlas.normalization.policy import NormalizationPolicy

logger = structlog.get_logger()

STABLE_PACKAGE = "opentelemetry.semconv.metrics"
INCUBATING_PACKAGE = "opentelemetry.semconv._incubating.metrics"

_CONSTANT_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_INSTRUMENT_DOC_RE = re.compile(r"Instrument:\s*([A-Za-z_]+)")

_TYPES = NormalizationPolicy.default()


def _instrument(raw: str | None) -> InstrumentType:
    if not raw:
        return InstrumentType.UNKNOWN
    return _TYPES.instrument_type(raw)


def _annotation_name(annotation: Any) -> str | None:
    if annotation is None:
        return None
    if isinstance(annotation, str):
        return annotation.rsplit(".", 1)[-1]
    return getattr(annotation, "__name__", None)


def _documented_instruments(module: ModuleType) -> dict[str, str]:
    """Map constant names to the ``Instrument:`` line of their docstring.

    Attribute docstrings are not kept at runtime, so the module source is
    read back and walked with ``ast``.
    """
    filename = getattr(module, "__file__", None)
    if not filename or not filename.endswith(".py"):
        return {}
    try:
        tree = ast.parse(Path(filename).read_text(encoding="utf-8"))
    except (OSError, SyntaxError):
        return {}

    found: dict[str, str] = {}
    body = tree.body
    for node, following in zip(body, body[1:]):
        if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
            name = node.target.id
        elif isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
            name = node.targets[0].id
        else:
            continue
        if (
            isinstance(following, ast.Expr)
            and isinstance(following.value, ast.Constant)
            and isinstance(following.value.value, str)
        ):
            match = _INSTRUMENT_DOC_RE.search(following.value.value)
            if match:
                found[name] = match.group(1)
    return found


def entries_from_module(module: ModuleType, stability: str) -> Iterator[SemanticConventionEntry]:
    """Yield one entry per metric-name constant defined in ``module``."""
    documented = _documented_instruments(module)
    for attr, value in vars(module).items():
        if not _CONSTANT_RE.match(attr) or not isinstance(value, str) or "." not in value:
            continue
        helper = getattr(module, f"create_{attr.lower()}", None)
        raw_type = None
        if callable(helper):
            raw_type = _annotation_name(getattr(helper, "__annotations__", {}).get("return"))
        if raw_type is None:
            raw_type = documented.get(attr)
        yield SemanticConventionEntry(
            convention_name=value,
            instrument_type=_instrument(raw_type),
            stability_level=stability,
        )

    # Older releases group names on a MetricInstruments class.
    legacy = getattr(module, "MetricInstruments", None)
    if isinstance(legacy, type):
        for attr, value in vars(legacy).items():
            if _CONSTANT_RE.match(attr) and isinstance(value, str) and "." in value:
                yield SemanticConventionEntry(convention_name=value, stability_level=stability)


def _walk_package(package_name: str) -> Iterator[ModuleType]:
    package = importlib.import_module(package_name)
    yield package
    for info in pkgutil.iter_modules(getattr(package, "__path__", [])):
        yield importlib.import_module(f"{package_name}.{info.name}")


def entries_from_package(package_name: str, stability: str) -> list[SemanticConventionEntry]:
    try:
        modules = list(_walk_package(package_name))
    except ImportError as e:
        raise CatalogLoadError(
            f"Semantic convention package not importable: {package_name}",
            {"package": package_name, "error": str(e)},
        ) from e
    entries: list[SemanticConventionEntry] = []
    for module in modules:
        entries.extend(entries_from_module(module, stability))
    return entries


def entries_from_file(path: str | Path) -> list[SemanticConventionEntry]:
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"Cannot read convention catalog: {path}", {"error": str(e)}) from e

    raw_entries = data.get("conventions") if isinstance(data, dict) else None
    if not isinstance(raw_entries, list):
        raise CatalogLoadError(
            f"Convention catalog must contain a 'conventions' list: {path}", {"path": str(path)}
        )

    entries: list[SemanticConventionEntry] = []
    for index, item in enumerate(raw_entries):
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict) or not item.get("name"):
            raise CatalogLoadError(
                f"Convention entry {index} has no name", {"path": str(path), "index": index}
            )
        entries.append(
            SemanticConventionEntry(
                convention_name=str(item["name"]).strip().lower(),
                instrument_type=_instrument(item.get("instrument")),
                stability_level=str(item.get("stability", "custom")),
            )
        )
    return entries


class SemanticConventionCatalog:
    """Read-only lookup of semantic convention metric names.

    ``overrides`` replace any packaged entry of the same name.
    """

    def __init__(
        self,
        entries: Iterable[SemanticConventionEntry] = (),
        overrides: Iterable[SemanticConventionEntry] = (),
    ) -> None:
        table: dict[str, SemanticConventionEntry] = {}
        for entry in entries:
            current = table.get(entry.convention_name)
            # stable beats development when both releases define a name
            if current is None or (current.stability_level != "stable" and entry.stability_level == "stable"):
                table[entry.convention_name] = entry
        for entry in overrides:
            table[entry.convention_name] = entry
        self._entries: Mapping[str, SemanticConventionEntry] = MappingProxyType(table)

    @classmethod
    def load(
        cls,
        *,
        include_semconv: bool = True,
        include_incubating: bool = True,
        path: str | Path | None = None,
    ) -> SemanticConventionCatalog:
        entries: list[SemanticConventionEntry] = []
        overrides: list[SemanticConventionEntry] = []
        if include_semconv:
            entries.extend(entries_from_package(STABLE_PACKAGE, "stable"))
            if include_incubating:
                entries.extend(entries_from_package(INCUBATING_PACKAGE, "development"))
        if path is not None:
            overrides = entries_from_file(path)
        catalog = cls(entries, overrides)
        if not catalog:
            raise CatalogLoadError("Semantic convention catalog is empty", {"path": str(path) if path else None})
        logger.info("catalog_loaded", entries=len(catalog))
        return catalog

    def get(self, name: str) -> SemanticConventionEntry | None:
        return self._entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SemanticConventionEntry]:
        return iter(self._entries.values())
