"""
Tests for the dependency graph builder.
"""

from tfaudit.graph.builder import (
    EdgeKind,
    ValidationClassifier,
    build_graph,
    resolve_target,
)
from tfaudit.hcl.ast import Reference
from tfaudit.hcl.parser import parse_file

from conftest import DB_INSTANCE_ENFORCED, DB_VALIDATION, VARIABLES, graph_for, parse_source

VALIDATION_KEY = ("terraform_data", "db_business_validations")
DB_KEY = ("aws_db_instance", "main")


class TestResolveTarget:
    """Разрешение ссылок в ключи узлов."""

    def test_resource_reference(self):
        assert resolve_target(Reference(("aws_s3_bucket", "logs", "arn"))) == ("aws_s3_bucket", "logs")

    def test_data_and_module_references(self):
        assert resolve_target(Reference(("data", "aws_ami", "ubuntu", "id"))) == ("data.aws_ami", "ubuntu")
        assert resolve_target(Reference(("module", "network", "vpc_id"))) == ("module", "network")

    def test_non_resource_roots(self):
        for root in ("var", "local", "each", "count", "self", "path", "terraform"):
            assert resolve_target(Reference((root, "x"))) is None

    def test_bare_iterator_name_is_not_a_resource(self):
        assert resolve_target(Reference(("item", "value"))) is None


class TestValidationClassifier:
    """Классификация validation-ресурсов."""

    def test_by_name(self):
        block = parse_file('resource "terraform_data" "input_validation" {\n}\n')[0]
        assert ValidationClassifier().is_validation(block)

    def test_by_precondition(self):
        block = parse_file(
            'resource "null_resource" "guard" {\n'
            '  lifecycle {\n'
            '    precondition {\n'
            '      condition     = var.x != null\n'
            '      error_message = "x must be set"\n'
            '    }\n'
            '  }\n'
            '}\n'
        )[0]
        assert ValidationClassifier().is_validation(block)

    def test_other_types_are_never_validations(self):
        block = parse_file('resource "aws_s3_bucket" "validation_logs" {\n}\n')[0]
        assert not ValidationClassifier().is_validation(block)


class TestBuildGraph:
    """Построение графа и запросы checkers."""

    def test_enforcement_edge_from_depends_on(self):
        _, graph = graph_for({"validation.tf": DB_VALIDATION, "main.tf": DB_INSTANCE_ENFORCED, "vars.tf": VARIABLES})

        assert graph.validations == {VALIDATION_KEY}
        assert graph.main_resources == {DB_KEY}
        edges = graph.enforcement_edges_to(VALIDATION_KEY)
        assert len(edges) == 1
        assert edges[0].source == DB_KEY
        assert edges[0].kind == EdgeKind.DEPENDS_ON
        assert graph.validations_without_enforcement() == []
        assert graph.main_resources_without_edge_to(VALIDATION_KEY) == []

    def test_validation_without_incoming_edges(self):
        _, graph = graph_for({"validation.tf": DB_VALIDATION})
        assert graph.validations_without_enforcement() == [VALIDATION_KEY]

    def test_implicit_reference_is_not_enforcement(self):
        _, graph = graph_for({
            "validation.tf": DB_VALIDATION,
            "main.tf": """
                resource "aws_db_instance" "main" {
                  identifier = terraform_data.db_business_validations.id
                }
            """,
        })
        assert graph.successors(DB_KEY) == [VALIDATION_KEY]
        assert graph.validations_without_enforcement() == [VALIDATION_KEY]
        assert graph.main_resources_without_edge_to(VALIDATION_KEY) == [DB_KEY]

    def test_data_sources_are_not_main_resources(self):
        _, graph = graph_for({
            "main.tf": """
                data "aws_ami" "ubuntu" {
                  most_recent = true
                }

                resource "aws_instance" "web" {
                  ami = data.aws_ami.ubuntu.id
                }
            """,
        })
        assert graph.main_resources == {("aws_instance", "web")}
        assert graph.successors(("aws_instance", "web")) == [("data.aws_ami", "ubuntu")]

    def test_dangling_reference(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_instance" "web" {
                  subnet_id = aws_subnet.missing.id
                }

                output "bucket" {
                  value = aws_s3_bucket.gone.arn
                }
            """,
        })
        assert [(d.source, d.reference) for d in graph.dangling] == [
            ("aws_instance.web", "aws_subnet.missing.id"),
            ("output.bucket", "aws_s3_bucket.gone.arn"),
        ]
        assert graph.dangling[0].location.line == 2

    def test_dynamic_block_iterator_is_not_a_reference(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_security_group" "web" {
                  dynamic "ip_rule" {
                    for_each = var.rules
                    content {
                      from_port = ip_rule.value.port
                    }
                  }
                  dynamic "egress" {
                    for_each = var.rules
                    iterator = egress_rule
                    content {
                      to_port = egress_rule.value.port
                    }
                  }
                }
            """,
        })
        assert graph.dangling == []

    def test_ignore_changes_and_provider_are_not_references(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_instance" "web" {
                  provider = aws.west
                  lifecycle {
                    ignore_changes = [tags_all.owner]
                  }
                }
            """,
        })
        assert graph.dangling == []
        assert graph.edges == []

    def test_duplicate_declaration_recorded(self):
        parsed = parse_source({
            "a.tf": 'resource "aws_s3_bucket" "logs" {\n}\n',
            "b.tf": 'resource "aws_s3_bucket" "logs" {\n}\n',
        })
        graph = build_graph(parsed)
        assert len(graph.duplicates) == 1
        assert graph.duplicates[0].duplicate.file == "modules/db/b.tf"

    def test_enforcement_matrix(self):
        _, graph = graph_for({
            "validation.tf": DB_VALIDATION,
            "main.tf": DB_INSTANCE_ENFORCED,
            "extra.tf": 'resource "aws_s3_bucket" "logs" {\n}\n',
        })
        matrix = graph.enforcement_matrix()
        assert matrix[DB_KEY] == {VALIDATION_KEY: True}
        assert matrix[("aws_s3_bucket", "logs")] == {VALIDATION_KEY: False}
        assert graph.unenforced_main_resources() == [("aws_s3_bucket", "logs")]


class TestCycles:
    """Поиск циклов."""

    def test_two_node_cycle_reported_once(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_a" "x" {
                  value = aws_b.y.id
                }

                resource "aws_b" "y" {
                  value = aws_a.x.id
                }
            """,
        })
        assert graph.find_cycles() == [[("aws_a", "x"), ("aws_b", "y")]]

    def test_self_reference_through_attribute_is_not_a_cycle(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_a" "x" {
                  name = "${aws_a.x.id}"
                }
            """,
        })
        assert graph.find_cycles() == []

    def test_acyclic_chain(self):
        _, graph = graph_for({
            "main.tf": """
                resource "aws_a" "x" {
                  value = aws_b.y.id
                }

                resource "aws_b" "y" {
                  value = aws_c.z.id
                }

                resource "aws_c" "z" {
                }
            """,
        })
        assert graph.find_cycles() == []

    def test_long_chain_does_not_recurse(self):
        lines = []
        for i in range(2000):
            lines.append(f'resource "aws_n" "n{i}" {{\n  next = aws_n.n{i + 1}.id\n}}\n')
        lines.append('resource "aws_n" "n2000" {\n  next = aws_n.n0.id\n}\n')
        _, graph = graph_for({"main.tf": "".join(lines)})
        cycles = graph.find_cycles()
        assert len(cycles) == 1
        assert len(cycles[0]) == 2001
