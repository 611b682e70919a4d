"""
Tests for GraphDiagnosticsChecker.
"""

from tfaudit.checkers.graph_diagnostics import GraphDiagnosticsChecker
from tfaudit.core.models import DANGLING_REFERENCE, DUPLICATE_DECLARATION, REFERENCE_CYCLE, Severity
from tfaudit.graph.builder import build_graph

from conftest import graph_for, parse_source

CYCLE = """
resource "aws_b" "y" {
  value = aws_a.x.id
}

resource "aws_a" "x" {
  value = aws_b.y.id
}
"""


class TestGraphDiagnostics:

    def test_dangling_reference_is_warning(self, config):
        parsed, graph = graph_for({"main.tf": 'resource "aws_instance" "web" {\n  subnet_id = aws_subnet.gone.id\n}\n'})
        findings = GraphDiagnosticsChecker(config).evaluate(parsed, graph)

        assert [f.rule_id for f in findings] == [DANGLING_REFERENCE]
        assert findings[0].severity == Severity.WARNING
        assert findings[0].resource_ref == "aws_instance.web"
        assert "aws_subnet.gone.id" in findings[0].message

    def test_dangling_reference_downgraded_when_module_has_broken_files(self, config):
        parsed, _ = graph_for({"main.tf": 'resource "aws_instance" "web" {\n  subnet_id = aws_subnet.gone.id\n}\n'})
        parsed.failed_files.append("modules/db/network.tf")
        findings = GraphDiagnosticsChecker(config).evaluate(parsed, build_graph(parsed))

        assert findings[0].severity == Severity.INFO

    def test_cycle_reported_once_as_info(self, config):
        parsed, graph = graph_for({"main.tf": CYCLE})
        findings = GraphDiagnosticsChecker(config).evaluate(parsed, graph)

        assert [f.rule_id for f in findings] == [REFERENCE_CYCLE]
        assert findings[0].severity == Severity.INFO
        assert findings[0].message == "Reference cycle: aws_a.x -> aws_b.y -> aws_a.x"

    def test_duplicate_declaration_is_error(self, config):
        parsed = parse_source({
            "a.tf": 'resource "aws_s3_bucket" "logs" {\n}\n',
            "b.tf": 'resource "aws_s3_bucket" "logs" {\n}\n',
        })
        findings = GraphDiagnosticsChecker(config).evaluate(parsed, build_graph(parsed))

        assert [f.rule_id for f in findings] == [DUPLICATE_DECLARATION]
        assert findings[0].severity == Severity.ERROR
        assert findings[0].location.file == "modules/db/b.tf"
        assert "modules/db/a.tf:1:1" in findings[0].message

    def test_data_source_scoped_to_check_block_is_declared(self, config):
        text = """
check "health" {
  data "http" "site" {
    url = "https://${var.domain}/health"
  }

  assert {
    condition     = data.http.site.status_code == 200
    error_message = "Health endpoint returned ${data.http.site.status_code}; set var.domain to a reachable host."
  }
}
"""
        parsed, graph = graph_for({"checks.tf": text})
        assert GraphDiagnosticsChecker(config).evaluate(parsed, graph) == []

    def test_scoped_data_source_does_not_hide_other_references(self, config):
        text = """
check "health" {
  data "http" "site" {
    url = "https://example.com"
  }

  assert {
    condition     = data.http.other.status_code == 200
    error_message = "unused"
  }
}
"""
        parsed, graph = graph_for({"checks.tf": text})
        findings = GraphDiagnosticsChecker(config).evaluate(parsed, graph)
        assert [dict(f.metadata)["reference"] for f in findings] == ["data.http.other.status_code"]

    def test_template_for_iterator_is_not_dangling(self, config):
        text = """
resource "aws_instance" "web" {
  user_data = "%{ for sub_net in var.subnets }${sub_net.id}\\n%{ endfor }"
}
"""
        parsed, graph = graph_for({"main.tf": text})
        assert GraphDiagnosticsChecker(config).evaluate(parsed, graph) == []
