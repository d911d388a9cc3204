"""Tests for language-AST extraction."""

import threading

import pytest
from factories import make_descriptor, make_fetch_result, write_tree

from metricatlas.config.sources import ExtractorOptions
from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import ConfidenceLevel, ExtractionMethod
from metricatlas.extractors import AstExtractor, create_extractor
from metricatlas.extractors.ast import grammar_for
from metricatlas.extractors.ast.folding import ConstantScope, Unresolved
from metricatlas.extractors.ast.ir import Binding, Call, Concat, Lit, Ref

PYTHON_MODULE = """\
from prometheus_client import Counter, Histogram
from opentelemetry import metrics

NAMESPACE = "myapp"
PREFIX = NAMESPACE + "_http"

REQUESTS = Counter("requests_total", "Requests served.", ["method", "code"], namespace=NAMESPACE)
LATENCY = Histogram(f"{PREFIX}_request_duration", "Request latency.", unit="seconds")

meter = metrics.get_meter(__name__)
active = meter.create_up_down_counter(
    "http.server.active_requests", unit="{request}", description="Active requests."
)

QUEUE_METRICS = {
    "queue_depth": {"help": "Jobs waiting.", "type": "gauge", "labels": ["queue"]},
}


def handler(name):
    return Counter(name, "dynamic")
"""

GO_SHARED = """\
package collector

const namespace = "node"
"""

GO_COLLECTOR = """\
package collector

import "github.com/prometheus/client_golang/prometheus"

var (
	scrapeDuration = prometheus.NewDesc(
		prometheus.BuildFQName(namespace, "scrape", "collector_duration_seconds"),
		"node_exporter: Duration of a collector scrape.",
		[]string{"collector"},
		nil,
	)
	requests = prometheus.NewCounterVec(
		prometheus.CounterOpts{
			Namespace: namespace,
			Name:      "http_requests_total",
			Help:      "Total HTTP requests.",
		},
		[]string{"code", "method"},
	)
)

func (c *collector) Collect(ch chan<- prometheus.Metric) {
	ch <- prometheus.MustNewConstMetric(scrapeDuration, prometheus.GaugeValue, 1.0, "cpu")
}

func dynamic(name string) *prometheus.Desc {
	return prometheus.NewDesc(name, "Built at runtime.", nil, nil)
}
"""

GO_OTEL = """\
package server

func instruments(meter metric.Meter) {
	meter.Int64Counter(
		"http.server.request.count",
		metric.WithDescription("Requests received."),
		metric.WithUnit("{request}"),
	)
	generator.NewFamilyGenerator("kube_pod_info", "Information about pod.", metric.Gauge, "", nil)
}
"""

PYTHON_SHADOWED = """\
from prometheus_client import Counter

name = "static"


def make(prefix):
    name = prefix + "_requests"
    return Counter(name, "Requests made.")
"""

PYTHON_GLOBAL = """\
import prometheus_client as prom

NAME = "jobs_total"


def configure(value):
    global NAME
    NAME = value


JOBS = prom.Counter(NAME, "Jobs run.")
"""

PYTHON_ALIASED = """\
from prometheus_client import Gauge as G

NAMESPACE = "app"
FULL = NAMESPACE + "_up"


def register(NAMESPACE):
    return G(FULL, "Whether the app is up.")
"""

PYTHON_STDLIB_ENUM = """\
import prometheus_client
from enum import Enum

Color = Enum("Color", "RED GREEN BLUE")
STATE = prometheus_client.Enum("job_state", "Job state.", states=["running", "done"])
"""

GO_REASSIGNED = """\
package collector

import "github.com/prometheus/client_golang/prometheus"

var namespace = "node"

func init() {
	namespace = computeNamespace()
}

var requests = prometheus.NewCounter(prometheus.CounterOpts{
	Namespace: namespace,
	Name:      "requests_total",
	Help:      "Requests served.",
})
"""

GO_SHADOWED = """\
package collector

const subsystem = "disk"

func newCollector() {
	subsystem := lookupSubsystem()
	prometheus.NewDesc(prometheus.BuildFQName("node", subsystem, "reads_total"), "Reads.", nil, nil)
	prometheus.NewDesc(prometheus.BuildFQName("node", "disk", "writes_total"), "Writes.", nil, nil)
}
"""

def ast_extractor(language: str, **options) -> AstExtractor:
    descriptor = make_descriptor(confidence=ConfidenceLevel.DERIVED, method=ExtractionMethod.LANGUAGE_AST)
    return AstExtractor(descriptor, ExtractorOptions(language=language, **options))


class TestConstantScope:
    """Tests for constant folding."""

    def test_folds_concatenation(self):
        """Test references and concatenation fold to a string."""
        scope = ConstantScope([Binding("ns", Lit("node"), 1), Binding("prefix", Concat((Ref("ns"), Lit("_cpu"))), 2)])
        assert scope.resolve(Concat((Ref("prefix"), Lit("_seconds")))) == "node_cpu_seconds"

    def test_reassigned_name_is_unresolved(self):
        """Test names bound twice are never guessed."""
        scope = ConstantScope([Binding("name", Lit("a"), 1), Binding("name", Lit("b"), 2)])
        with pytest.raises(Unresolved, match="more than once"):
            scope.resolve(Ref("name"))

    def test_build_fq_name_and_sprintf(self):
        """Test the Go name helpers fold like their runtime counterparts."""
        scope = ConstantScope([Binding("ns", Lit("node"), 1)])
        fq = Call("prometheus.BuildFQName", (Ref("ns"), Lit(""), Lit("up")))
        assert scope.resolve(fq) == "node_up"
        sprintf = Call("fmt.Sprintf", (Lit("%s_%s_total"), Ref("ns"), Lit("errors")))
        assert scope.resolve(sprintf) == "node_errors_total"

    def test_sprintf_with_numeric_verb_is_unresolved(self):
        """Test formats using other verbs are not folded."""
        scope = ConstantScope()
        with pytest.raises(Unresolved):
            scope.resolve(Call("fmt.Sprintf", (Lit("cpu%d"), Lit("1"))))

    def test_shadowed_names_are_unresolved(self):
        """Test a function-local name hides the module constant it shadows."""
        scope = ConstantScope([Binding("ns", Lit("node"), 1), Binding("fq", Concat((Ref("ns"), Lit("_up"))), 2)])
        local = scope.shadowed_by({"ns"})
        with pytest.raises(Unresolved, match="local variable"):
            local.resolve(Ref("ns"))
        assert local.resolve(Ref("fq")) == "node_up"
        assert scope.resolve(Ref("ns")) == "node"


class TestPythonAst:
    """Tests for Python extraction."""

    def test_recognized_shapes(self, tmp_path):
        """Test prometheus_client, OpenTelemetry and dict-table definitions."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_MODULE})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        by_name = {m.raw_name: m for m in result.metrics}
        assert set(by_name) == {
            "myapp_requests_total",
            "myapp_http_request_duration_seconds",
            "http.server.active_requests",
            "queue_depth",
        }
        requests = by_name["myapp_requests_total"]
        assert requests.raw_type == "Counter"
        assert requests.label_names == ["method", "code"]
        assert requests.description == "Requests served."
        assert requests.line == 7
        assert requests.component == "app"
        assert requests.extraction_method == ExtractionMethod.LANGUAGE_AST

        assert by_name["myapp_http_request_duration_seconds"].unit == "seconds"
        assert by_name["http.server.active_requests"].raw_type == "up_down_counter"
        assert by_name["http.server.active_requests"].unit == "{request}"
        assert by_name["queue_depth"].label_names == ["queue"]

    def test_dynamic_name_is_skipped(self, tmp_path):
        """Test names that are not constants are reported, never guessed."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_MODULE})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert len(result.partial_failures) == 1
        failure = result.partial_failures[0]
        assert failure.file_path == "app/metrics.py"
        assert "'name' is a local variable" in failure.reason

    def test_syntax_error_does_not_stop_extraction(self, tmp_path):
        """Test an unparsable file is a partial failure."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_MODULE, "app/broken.py": "def (:\n"})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert len(result.metrics) == 4
        assert any(f.file_path == "app/broken.py" and "syntax error" in f.reason for f in result.partial_failures)

    def test_tests_are_excluded(self, tmp_path):
        """Test test modules are excluded by default."""
        write_tree(tmp_path, {"app/tests/test_metrics.py": PYTHON_MODULE})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))
        assert result.metrics == []

    def test_function_local_shadowing_is_skipped(self, tmp_path):
        """Test a local that shadows a module constant is never folded to it."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_SHADOWED})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert result.metrics == []
        assert len(result.partial_failures) == 1
        assert "'name' is a local variable" in result.partial_failures[0].reason
        assert result.partial_failures[0].line == 8

    def test_global_rebinding_is_skipped(self, tmp_path):
        """Test a module name rebound through ``global`` is not a constant."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_GLOBAL})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert result.metrics == []
        assert "'NAME' is assigned more than once" in result.partial_failures[0].reason

    def test_aliased_import_and_unshadowed_constant(self, tmp_path):
        """Test aliased constructors resolve and constants fold where they were bound."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_ALIASED})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert [(m.raw_name, m.raw_type) for m in result.metrics] == [("app_up", "Gauge")]
        assert result.partial_failures == []

    def test_stdlib_enum_is_not_a_metric(self, tmp_path):
        """Test only constructors imported from prometheus_client are recognized."""
        write_tree(tmp_path, {"app/states.py": PYTHON_STDLIB_ENUM})
        result = ast_extractor("python").parse(make_fetch_result(tmp_path))

        assert [(m.raw_name, m.raw_type) for m in result.metrics] == [("job_state", "Enum")]
        assert result.partial_failures == []

    def test_set_cancellation_stops_before_reading(self, tmp_path):
        """Test a cancelled extraction reads no further files."""
        write_tree(tmp_path, {"app/metrics.py": PYTHON_MODULE})
        cancelled = threading.Event()
        cancelled.set()
        result = ast_extractor("python").parse(make_fetch_result(tmp_path), cancelled=cancelled)

        assert result.metrics == []
        assert result.partial_failures == []


class TestGoAst:
    """Tests for Go extraction."""

    def test_client_golang_shapes(self, tmp_path):
        """Test NewDesc and NewCounterVec with package constants from another file."""
        write_tree(
            tmp_path,
            {"collector/collector.go": GO_SHARED, "collector/cpu.go": GO_COLLECTOR},
        )
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))

        by_name = {m.raw_name: m for m in result.metrics}
        assert set(by_name) == {"node_scrape_collector_duration_seconds", "node_http_requests_total"}

        desc = by_name["node_scrape_collector_duration_seconds"]
        assert desc.raw_type == "GaugeValue"
        assert desc.label_names == ["collector"]
        assert desc.description == "node_exporter: Duration of a collector scrape."
        assert desc.component == "collector"
        assert desc.file_path == "collector/cpu.go"

        requests = by_name["node_http_requests_total"]
        assert requests.raw_type == "Counter"
        assert requests.label_names == ["code", "method"]
        assert requests.description == "Total HTTP requests."

    def test_runtime_names_are_partial_failures(self, tmp_path):
        """Test a NewDesc whose name is a parameter is skipped."""
        write_tree(
            tmp_path,
            {"collector/collector.go": GO_SHARED, "collector/cpu.go": GO_COLLECTOR},
        )
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))

        assert [f.file_path for f in result.partial_failures] == ["collector/cpu.go"]
        assert "NewDesc()" in result.partial_failures[0].reason

    def test_otel_and_family_generators(self, tmp_path):
        """Test OpenTelemetry Go instruments and kube-state-metrics generators."""
        write_tree(tmp_path, {"server/instruments.go": GO_OTEL})
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))

        by_name = {m.raw_name: m for m in result.metrics}
        counter = by_name["http.server.request.count"]
        assert counter.raw_type == "Counter"
        assert counter.description == "Requests received."
        assert counter.unit == "{request}"
        assert by_name["kube_pod_info"].raw_type == "Gauge"
        assert by_name["kube_pod_info"].description == "Information about pod."

    def test_go_test_files_excluded(self, tmp_path):
        """Test _test.go files are never read."""
        write_tree(tmp_path, {"collector/collector.go": GO_SHARED, "collector/cpu_test.go": GO_COLLECTOR})
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))
        assert result.metrics == []

    def test_package_var_reassigned_in_function(self, tmp_path):
        """Test a package var assigned inside a function body is not folded."""
        write_tree(tmp_path, {"collector/requests.go": GO_REASSIGNED})
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))

        assert result.metrics == []
        assert len(result.partial_failures) == 1
        assert "'namespace' is assigned more than once" in result.partial_failures[0].reason

    def test_short_var_declaration_shadows_constant(self, tmp_path):
        """Test a ``:=`` local hides the package constant of the same name."""
        write_tree(tmp_path, {"collector/disk.go": GO_SHADOWED})
        result = ast_extractor("go").parse(make_fetch_result(tmp_path))

        assert [m.raw_name for m in result.metrics] == ["node_disk_writes_total"]
        assert len(result.partial_failures) == 1
        assert "'subsystem' is a local variable" in result.partial_failures[0].reason


class TestGrammarSelection:
    """Tests for grammar lookup."""

    def test_unknown_language(self):
        """Test unsupported languages are configuration errors."""
        with pytest.raises(ConfigurationError, match="rust"):
            grammar_for("rust")

    def test_factory_selects_ast_extractor(self):
        """Test create_extractor returns an AST extractor for LanguageAst."""
        descriptor = make_descriptor(method=ExtractionMethod.LANGUAGE_AST)
        extractor = create_extractor(descriptor, ExtractorOptions(language="go"))
        assert isinstance(extractor, AstExtractor)
        assert extractor.grammar.language == "go"
