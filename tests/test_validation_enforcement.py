"""
Tests for ValidationEnforcementChecker.
"""

import pytest

from tfaudit.checkers.validation_enforcement import ValidationEnforcementChecker
from tfaudit.config import EnforcementException
from tfaudit.core.models import DEAD_VALIDATION, EMPTY_VALIDATION, PARTIAL_ENFORCEMENT, Severity

from conftest import DB_INSTANCE_ENFORCED, DB_VALIDATION, graph_for

BUCKET = """
resource "aws_s3_bucket" "logs" {
  bucket = "logs"
}
"""


def evaluate(config, files, exceptions=()):
    parsed, graph = graph_for(files)
    return ValidationEnforcementChecker(config, exceptions).evaluate(parsed, graph)


def rule_ids(findings):
    return [f.rule_id for f in findings]


class TestDeadValidation:
    """dead-validation: validation-ресурс без depends_on."""

    def test_unreferenced_validation_yields_one_finding(self, config):
        findings = evaluate(config, {"validation.tf": DB_VALIDATION})

        assert len(findings) == 1
        finding = findings[0]
        assert finding.rule_id == DEAD_VALIDATION
        assert finding.severity == Severity.ERROR
        assert finding.module == "modules/db"
        assert finding.resource_ref == "terraform_data.db_business_validations"
        assert "modules/db" in finding.message
        assert "terraform_data.db_business_validations" in finding.message

    def test_depends_on_clears_the_finding(self, config):
        findings = evaluate(config, {"validation.tf": DB_VALIDATION, "main.tf": DB_INSTANCE_ENFORCED})
        assert findings == []

    def test_implicit_reference_does_not_enforce(self, config):
        findings = evaluate(config, {
            "validation.tf": DB_VALIDATION,
            "main.tf": """
                resource "aws_db_instance" "main" {
                  identifier = terraform_data.db_business_validations.id
                }
            """,
        })
        assert rule_ids(findings) == [DEAD_VALIDATION]

    def test_one_finding_per_rule_not_per_resource(self, config):
        findings = evaluate(config, {
            "validation.tf": DB_VALIDATION,
            "main.tf": BUCKET + """
                resource "aws_db_instance" "main" {
                  instance_class = "db.t3.micro"
                }
            """,
        })
        assert rule_ids(findings) == [DEAD_VALIDATION]

    def test_depends_on_between_validations_is_not_enforcement(self, config):
        chained = """
            resource "terraform_data" "a_validation" {
              lifecycle {
                precondition {
                  condition     = var.tier != ""
                  error_message = "tier is empty"
                }
              }

              depends_on = [terraform_data.b_validation]
            }

            resource "terraform_data" "b_validation" {
              lifecycle {
                precondition {
                  condition     = var.size > 0
                  error_message = "size is zero"
                }
              }
            }
        """
        findings = evaluate(config, {"validation.tf": chained, "main.tf": BUCKET})

        dead = sorted(f.resource_ref for f in findings if f.rule_id == DEAD_VALIDATION)
        assert dead == ["terraform_data.a_validation", "terraform_data.b_validation"]
        assert PARTIAL_ENFORCEMENT not in rule_ids(findings)

    def test_module_without_validations_is_clean(self, config):
        assert evaluate(config, {"main.tf": BUCKET}) == []


class TestEmptyValidation:
    """empty-validation: validation-ресурс без preconditions."""

    def test_validation_without_preconditions(self, config):
        findings = evaluate(config, {
            "validation.tf": 'resource "terraform_data" "input_validation" {\n}\n',
            "main.tf": """
                resource "aws_s3_bucket" "logs" {
                  depends_on = [terraform_data.input_validation]
                }
            """,
        })
        assert rule_ids(findings) == [EMPTY_VALIDATION]
        assert findings[0].severity == Severity.ERROR


class TestPartialEnforcement:
    """partial-enforcement: часть main-ресурсов не зависит от validation."""

    def test_unenforced_resource_reported_once_per_module(self, config):
        findings = evaluate(config, {
            "validation.tf": DB_VALIDATION,
            "main.tf": DB_INSTANCE_ENFORCED,
            "bucket.tf": BUCKET + """
                resource "aws_s3_bucket" "backups" {
                  bucket = "backups"
                }
            """,
        })

        assert rule_ids(findings) == [PARTIAL_ENFORCEMENT]
        finding = findings[0]
        assert finding.severity == Severity.WARNING
        assert "aws_s3_bucket.backups" in finding.message
        assert "aws_s3_bucket.logs" in finding.message
        assert dict(finding.metadata)["unenforced"] == "aws_s3_bucket.backups, aws_s3_bucket.logs"

    def test_data_sources_do_not_need_enforcement(self, config):
        findings = evaluate(config, {
            "validation.tf": DB_VALIDATION,
            "main.tf": DB_INSTANCE_ENFORCED,
            "data.tf": 'data "aws_caller_identity" "current" {\n}\n',
        })
        assert findings == []


class TestExceptions:
    """Allow-list модулей."""

    @pytest.mark.parametrize("pattern", ["modules/db", "modules/*"])
    def test_allow_listed_module_is_downgraded_to_info(self, config, pattern):
        exceptions = [EnforcementException(module=pattern, reason="validated by the caller module")]
        findings = evaluate(config, {"validation.tf": DB_VALIDATION}, exceptions)

        assert rule_ids(findings) == [DEAD_VALIDATION]
        assert findings[0].severity == Severity.INFO
        assert "validated by the caller module" in findings[0].message

    def test_exception_for_other_module_does_not_apply(self, config):
        exceptions = [EnforcementException(module="modules/network", reason="n/a")]
        findings = evaluate(config, {"validation.tf": DB_VALIDATION}, exceptions)
        assert findings[0].severity == Severity.ERROR

    def test_empty_validation_is_not_downgraded(self, config):
        exceptions = [EnforcementException(module="modules/db", reason="legacy")]
        findings = evaluate(
            config,
            {"validation.tf": 'resource "terraform_data" "input_validation" {\n}\n'},
            exceptions,
        )
        severities = {f.rule_id: f.severity for f in findings}
        assert severities[EMPTY_VALIDATION] == Severity.ERROR
        assert severities[DEAD_VALIDATION] == Severity.INFO
