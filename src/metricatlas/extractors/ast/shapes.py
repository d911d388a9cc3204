"""
Recognition of metric definition shapes in lowered source.

Supported shapes:
- prometheus_client constructors: ``Counter("name", "help", ["label"])`` with
  optional ``namespace``, ``subsystem`` and ``unit`` keywords, when the
  constructor was imported from prometheus_client
- OpenTelemetry Python instruments: ``meter.create_counter("name", ...)``
- client_golang constructors: ``prometheus.NewCounterVec(prometheus.CounterOpts{...}, labels)``
- client_golang descriptors: ``prometheus.NewDesc(fqName, help, labels, constLabels)``,
  typed by the ``MustNewConstMetric`` calls or ``typedDesc`` literals that use them
- OpenTelemetry Go instruments: ``meter.Int64Counter("name", metric.WithDescription(...))``
- kube-state-metrics family generators: ``generator.NewFamilyGenerator("name", "help", metric.Gauge, ...)``
- map/dict literals keyed by metric name whose values carry help and type fields
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from metricatlas.extractors.ast.folding import ConstantScope, Unresolved
from metricatlas.extractors.ast.ir import Call, Composite, Lit, Node, ParsedFile, Ref

PROMETHEUS_CLIENT = "prometheus_client"

_PROM_PY = {"Counter", "Gauge", "Histogram", "Summary", "Info", "Enum"}
_OTEL_PY = re.compile(r"^create_(observable_)?(counter|up_down_counter|histogram|gauge)$")
_PROM_GO = re.compile(r"^New(Counter|Gauge|Histogram|Summary|Untyped)(Vec|Func)?$")
_OTEL_GO = re.compile(r"^(?:Int64|Float64)(Observable)?(Counter|UpDownCounter|Histogram|Gauge)$")
_FAMILY_GO = {"NewFamilyGenerator", "NewFamilyGeneratorWithStability", "NewOptInFamilyGenerator"}
_CONST_METRIC = {"MustNewConstMetric", "NewConstMetric", "MustNewConstMetricWithCreatedTimestamp"}
_VALUE_TYPES = {"CounterValue", "GaugeValue", "UntypedValue"}

_HELP_KEYS = ("help", "description", "documentation", "desc")
_TYPE_KEYS = ("type", "kind", "metric_type", "metrictype")
_UNIT_KEYS = ("unit",)
_LABEL_KEYS = ("labels", "labelnames", "label_names", "attributes")


@dataclass
class Definition:
    """A recognized metric definition, before provenance is attached."""

    name: str
    raw_type: str
    file_path: str
    line: int
    description: str = ""
    unit: str | None = None
    labels: list[str] = field(default_factory=list)


@dataclass
class Skipped:
    file_path: str
    line: int
    reason: str


@dataclass
class RecognitionResult:
    definitions: list[Definition] = field(default_factory=list)
    skipped: list[Skipped] = field(default_factory=list)


def _join_nonempty(*parts: str | None) -> str:
    return "_".join(p for p in parts if p)


class ShapeRecognizer:
    """Walks the calls and literals of one scope and yields definitions."""

    def __init__(self, scope: ConstantScope, files: Iterable[ParsedFile]) -> None:
        self.module_scope = scope
        self.scope = scope
        self.files = list(files)
        self._desc_types = self._collect_desc_types()

    def recognize(self) -> RecognitionResult:
        result = RecognitionResult()
        for parsed in self.files:
            for call in parsed.calls:
                self.scope = self.module_scope.shadowed_by(call.shadowed)
                self._recognize_call(parsed.path, call, result)
            for composite in parsed.composites:
                self.scope = self.module_scope.shadowed_by(composite.shadowed)
                self._recognize_map(parsed.path, composite, result)
        self.scope = self.module_scope
        return result

    def _skip(self, result: RecognitionResult, path: str, line: int, what: str, reason: str) -> None:
        result.skipped.append(Skipped(path, line, f"{what}: {reason}"))

    def _text(self, node: Node | None) -> str:
        return self.scope.try_resolve(node) or ""

    def _recognize_call(self, path: str, call: Call, result: RecognitionResult) -> None:
        name = call.name
        if name in _PROM_PY and call.callee.startswith(PROMETHEUS_CLIENT + "."):
            self._prometheus_python(path, call, result)
        elif _OTEL_PY.match(name):
            self._otel_python(path, call, result)
        elif _PROM_GO.match(name):
            self._prometheus_go(path, call, result)
        elif name == "NewDesc":
            self._prometheus_desc(path, call, result)
        elif _OTEL_GO.match(name):
            self._otel_go(path, call, result)
        elif name in _FAMILY_GO:
            self._family_generator(path, call, result)

    def _prometheus_python(self, path: str, call: Call, result: RecognitionResult) -> None:
        name_node = call.arg(0, "name")
        help_node = call.arg(1, "documentation")
        # collections.Counter and friends take no documentation argument
        if name_node is None or help_node is None:
            return
        try:
            base = self.scope.resolve(name_node)
            namespace = self.scope.resolve(call.kwarg("namespace")) if call.kwarg("namespace") else ""
            subsystem = self.scope.resolve(call.kwarg("subsystem")) if call.kwarg("subsystem") else ""
            unit = self.scope.resolve(call.kwarg("unit")) if call.kwarg("unit") else ""
        except Unresolved as e:
            self._skip(result, path, call.line, f"{call.name}()", e.reason)
            return
        full = _join_nonempty(namespace, subsystem, base)
        if unit and not full.endswith(f"_{unit}"):
            full = f"{full}_{unit}"
        result.definitions.append(
            Definition(
                name=full,
                raw_type=call.name,
                file_path=path,
                line=call.line,
                description=self._text(help_node),
                unit=unit or None,
                labels=self.scope.resolve_list(call.arg(2, "labelnames")),
            )
        )

    def _otel_python(self, path: str, call: Call, result: RecognitionResult) -> None:
        match = _OTEL_PY.match(call.name)
        assert match is not None
        observable, kind = match.groups()
        try:
            name = self.scope.resolve(call.arg(0, "name"))
        except Unresolved as e:
            self._skip(result, path, call.line, f"{call.name}()", e.reason)
            return
        # create_counter(name, unit, description); observables take callbacks second
        offset = 1 if observable else 0
        result.definitions.append(
            Definition(
                name=name,
                raw_type=f"{'observable_' if observable else ''}{kind}",
                file_path=path,
                line=call.line,
                description=self._text(call.arg(2 + offset, "description")),
                unit=self.scope.try_resolve(call.arg(1 + offset, "unit")) or None,
            )
        )

    def _prometheus_go(self, path: str, call: Call, result: RecognitionResult) -> None:
        match = _PROM_GO.match(call.name)
        assert match is not None
        kind, variant = match.groups()
        opts = call.arg(0)
        if not isinstance(opts, Composite):
            self._skip(result, path, call.line, f"{call.name}()", "options are not a literal")
            return
        try:
            base = self.scope.resolve(opts.lookup("Name"))
            namespace = self.scope.resolve(opts.lookup("Namespace")) if opts.lookup("Namespace") else ""
            subsystem = self.scope.resolve(opts.lookup("Subsystem")) if opts.lookup("Subsystem") else ""
        except Unresolved as e:
            self._skip(result, path, call.line, f"{call.name}()", e.reason)
            return
        labels = self.scope.resolve_list(call.arg(1)) if variant == "Vec" else []
        result.definitions.append(
            Definition(
                name=_join_nonempty(namespace, subsystem, base),
                raw_type=kind,
                file_path=path,
                line=call.line,
                description=self._text(opts.lookup("Help")),
                labels=labels,
            )
        )

    def _prometheus_desc(self, path: str, call: Call, result: RecognitionResult) -> None:
        try:
            name = self.scope.resolve(call.arg(0))
        except Unresolved as e:
            self._skip(result, path, call.line, "NewDesc()", e.reason)
            return
        result.definitions.append(
            Definition(
                name=name,
                raw_type=self._desc_type(path, call),
                file_path=path,
                line=call.line,
                description=self._text(call.arg(1)),
                labels=self.scope.resolve_list(call.arg(2)),
            )
        )

    def _otel_go(self, path: str, call: Call, result: RecognitionResult) -> None:
        match = _OTEL_GO.match(call.name)
        assert match is not None
        observable, kind = match.groups()
        try:
            name = self.scope.resolve(call.arg(0))
        except Unresolved as e:
            self._skip(result, path, call.line, f"{call.name}()", e.reason)
            return
        description, unit = "", None
        for option in call.args[1:]:
            if isinstance(option, Call) and option.name == "WithDescription":
                description = self._text(option.arg(0))
            elif isinstance(option, Call) and option.name == "WithUnit":
                unit = self.scope.try_resolve(option.arg(0)) or None
        result.definitions.append(
            Definition(
                name=name,
                raw_type=f"{observable or ''}{kind}",
                file_path=path,
                line=call.line,
                description=description,
                unit=unit,
            )
        )

    def _family_generator(self, path: str, call: Call, result: RecognitionResult) -> None:
        try:
            name = self.scope.resolve(call.arg(0))
        except Unresolved as e:
            self._skip(result, path, call.line, f"{call.name}()", e.reason)
            return
        type_node = call.arg(2)
        result.definitions.append(
            Definition(
                name=name,
                raw_type=type_node.last if isinstance(type_node, Ref) else "unknown",
                file_path=path,
                line=call.line,
                description=self._text(call.arg(1)),
            )
        )

    def _recognize_map(self, path: str, composite: Composite, result: RecognitionResult) -> None:
        for key, value in composite.entries:
            if not isinstance(value, Composite):
                continue
            if value.lookup(*_HELP_KEYS) is None or value.lookup(*_TYPE_KEYS) is None:
                continue
            keyed_by_name = isinstance(key, Lit) or (
                isinstance(key, Ref) and composite.type_name.startswith(("map", "dict"))
            )
            if not keyed_by_name:
                continue
            try:
                name = self.scope.resolve(key)
            except Unresolved as e:
                self._skip(result, path, composite.line, "metric table entry", e.reason)
                continue
            type_node = value.lookup(*_TYPE_KEYS)
            raw_type = self.scope.try_resolve(type_node)
            if raw_type is None and isinstance(type_node, Ref):
                raw_type = type_node.last
            result.definitions.append(
                Definition(
                    name=name,
                    raw_type=raw_type or "unknown",
                    file_path=path,
                    line=composite.line,
                    description=self._text(value.lookup(*_HELP_KEYS)),
                    unit=self.scope.try_resolve(value.lookup(*_UNIT_KEYS)) or None,
                    labels=self.scope.resolve_list(value.lookup(*_LABEL_KEYS)),
                )
            )

    def _collect_desc_types(self) -> dict[tuple[str, ...], str]:
        """Value types for NewDesc results, keyed by call position or binding name."""
        by_position: dict[tuple[str, ...], str] = {}
        by_name: dict[str, set[str]] = {}
        for parsed in self.files:
            for call in parsed.calls:
                if call.name in _CONST_METRIC:
                    desc, value_type = call.arg(0), call.arg(1)
                    if isinstance(desc, Ref) and isinstance(value_type, Ref) and value_type.last in _VALUE_TYPES:
                        by_name.setdefault(desc.last, set()).add(value_type.last)
                elif call.name.startswith(("MustNewConstHistogram", "NewConstHistogram")):
                    if isinstance(call.arg(0), Ref):
                        by_name.setdefault(call.arg(0).last, set()).add("Histogram")  # type: ignore[union-attr]
                elif call.name.startswith(("MustNewConstSummary", "NewConstSummary")):
                    if isinstance(call.arg(0), Ref):
                        by_name.setdefault(call.arg(0).last, set()).add("Summary")  # type: ignore[union-attr]
            for composite in parsed.composites:
                values = [v for _, v in composite.entries] + list(composite.elements)
                descs = [v for v in values if isinstance(v, Call) and v.name == "NewDesc"]
                kinds = {v.last for v in values if isinstance(v, Ref) and v.last in _VALUE_TYPES}
                if len(descs) == 1 and len(kinds) == 1:
                    by_position[self._position(parsed.path, descs[0])] = kinds.pop()

        types: dict[tuple[str, ...], str] = dict(by_position)
        for name, kinds in by_name.items():
            if len(kinds) == 1:
                types[("name", name)] = next(iter(kinds))
        return types

    @staticmethod
    def _position(path: str, call: Call) -> tuple[str, ...]:
        return ("pos", path, str(call.line), str(call.column))

    def _desc_type(self, path: str, call: Call) -> str:
        found = self._desc_types.get(self._position(path, call))
        if found is None and call.target:
            found = self._desc_types.get(("name", call.target.rsplit(".", 1)[-1]))
        return found or "untyped"
