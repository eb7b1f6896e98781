"""Tests for oscal/lint.py."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import yaml

from lula.models.requirement import RequirementResult, RequirementStatus
from lula.oscal.assessment_results import generate_assessment_results
from lula.oscal.lint import lint_file, lint_validation

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def write(tmp_path, name: str, data) -> str:
    path = tmp_path / name
    if name.endswith(".json"):
        path.write_text(json.dumps(data), encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return str(path)


def assessment_results() -> dict:
    return generate_assessment_results(
        {"req-1": RequirementResult(uuid="req-1", control_id="ac-1", status=RequirementStatus.SATISFIED)},
        start=START,
        end=START,
    )


@pytest.fixture
def complete_component(component_definition) -> dict:
    """The shared component definition with the descriptions OSCAL requires."""
    inner = component_definition["component-definition"]
    inner["metadata"]["last-modified"] = "2024-05-01T12:00:00+00:00"
    for component in inner["components"]:
        component["description"] = "service under test"
        for implementation in component["control-implementations"]:
            implementation["description"] = "controls"
            for requirement in implementation["implemented-requirements"]:
                requirement["description"] = requirement["control-id"]
    return component_definition


class TestAssessmentResults:
    def test_generated_results_are_valid(self, tmp_path):
        result = lint_file(write(tmp_path, "sar.json", assessment_results()))
        assert result.model_type == "assessment-results"
        assert result.errors == []
        assert result.valid

    def test_missing_fields_reported(self, tmp_path):
        model = assessment_results()
        inner = model["assessment-results"]
        del inner["import-ap"]
        inner["results"][0]["uuid"] = "not-a-uuid"
        inner["results"][0]["findings"][0]["target"]["status"]["state"] = "unknown"

        result = lint_file(write(tmp_path, "sar.yaml", model))
        assert not result.valid
        assert "assessment-results: import-ap.href is required" in result.errors
        assert "results[0]: uuid 'not-a-uuid' is not a valid UUID" in result.errors
        assert any("findings[0].target: status.state" in e for e in result.errors)

    def test_other_oscal_version_warns(self, tmp_path):
        model = assessment_results()
        model["assessment-results"]["metadata"]["oscal-version"] = "1.0.4"
        result = lint_file(write(tmp_path, "sar.yaml", model))
        assert result.valid
        assert result.warnings == ["assessment-results: oscal-version 1.0.4 is not 1.1.2"]


class TestComponentDefinition:
    def test_valid(self, tmp_path, complete_component):
        result = lint_file(write(tmp_path, "component.yaml", complete_component))
        assert result.model_type == "component-definition"
        assert result.errors == []

    def test_missing_descriptions(self, tmp_path, component_definition):
        result = lint_file(write(tmp_path, "component.yaml", component_definition))
        assert "components[0]: description is required" in result.errors
        assert "component-definition.metadata: last-modified is required" in result.errors

    def test_linked_validation_checked(self, tmp_path, complete_component, validation_factory):
        broken = validation_factory("Service is healthy", "11111111-0000-4000-8000-000000000001", "/healthy")
        broken["domain"]["type"] = "ssh"
        resources = complete_component["component-definition"]["back-matter"]["resources"]
        resources[0]["description"] = yaml.safe_dump(broken, sort_keys=False)

        result = lint_file(write(tmp_path, "component.yaml", complete_component))
        assert result.errors == ["back-matter.resources[0]: domain: Unknown domain: ssh"]

    def test_templated_validation_skipped(self, tmp_path, complete_component):
        resources = complete_component["component-definition"]["back-matter"]["resources"]
        resources[1]["description"] = "domain: {{ .const.domain }}\n"

        result = lint_file(write(tmp_path, "component.yaml", complete_component))
        assert result.valid
        assert result.warnings == [
            "back-matter.resources[1]: validation contains template placeholders and was not linted"
        ]


class TestValidation:
    def test_valid_validation_file(self, tmp_path, validation_factory):
        document = validation_factory("Service is healthy", "11111111-0000-4000-8000-000000000001", "/healthy")
        result = lint_file(write(tmp_path, "validation.yaml", document))
        assert result.model_type == "validation"
        assert result.valid

    def test_multi_document_file(self, tmp_path, validation_factory):
        good = validation_factory("good", "11111111-0000-4000-8000-000000000001", "/healthy")
        bad = validation_factory("bad", "11111111-0000-4000-8000-000000000002", "/healthy")
        bad["lula-version"] = "^latest"
        path = tmp_path / "validations.yaml"
        path.write_text(yaml.safe_dump_all([good, bad], sort_keys=False), encoding="utf-8")

        result = lint_file(path)
        assert len(result.errors) == 1
        assert result.errors[0].startswith("validation[1]: lula-version:")

    def test_duplicate_test_names(self, validation_factory):
        document = validation_factory("Service is healthy", "11111111-0000-4000-8000-000000000001", "/healthy")
        document["tests"] = [{"name": "t", "changes": []}, {"name": "t", "changes": []}]
        assert lint_validation(document) == ["validation: duplicate test name 't'"]

    def test_model_errors_located(self, validation_factory):
        document = validation_factory("Service is healthy", "11111111-0000-4000-8000-000000000001", "/healthy")
        document["tests"] = [{"name": "t", "expected-result": "maybe"}]
        errors = lint_validation(document)
        assert len(errors) == 1
        assert errors[0].startswith("validation: tests.0.expected-result:")


class TestFiles:
    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("a: [unclosed", encoding="utf-8")
        result = lint_file(path)
        assert not result.valid
        assert result.errors[0].startswith("invalid YAML:")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "component.txt"
        path.write_text("{}", encoding="utf-8")
        assert lint_file(path).errors == ["unsupported file extension '.txt', requires .json or .yaml"]

    def test_unrecognised_document(self, tmp_path):
        result = lint_file(write(tmp_path, "other.yaml", {"kind": "ConfigMap"}))
        assert result.errors == ["no OSCAL model or validation document found"]
