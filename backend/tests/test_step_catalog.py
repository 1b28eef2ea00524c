"""Tests for step kind validation and parsing."""

import pytest

from autoflow.exceptions import DefinitionError
from autoflow.schemas.steps import DataSourceStep, WaitDelayStep
from autoflow.services import step_catalog


class TestValidate:
    def test_valid_configs(self):
        assert step_catalog.validate("data_source", {"source_type": "upload", "required_fields": ["email"]}).valid
        assert step_catalog.validate("ai_content", {"template": "Hi {{name}}", "brand_voice": "friendly"}).valid
        assert step_catalog.validate("ai_analysis", {"analysis_prompt": "Score these"}).valid
        assert step_catalog.validate("condition", {"condition_logic": "{{x}} > 1"}).valid
        assert step_catalog.validate("email_send", {"email_service": "mailgun", "from_email": "a@b.c"}).valid
        assert step_catalog.validate("wait_delay", {"duration": 0}).valid

    def test_unknown_kind(self):
        result = step_catalog.validate("send_fax", {})
        assert not result.valid
        assert "Unknown step type" in result.errors[0]

    def test_missing_required_key(self):
        result = step_catalog.validate("data_source", {"source_type": "upload"})
        assert not result.valid
        assert any("required_fields" in e for e in result.errors)

    def test_wrong_type(self):
        result = step_catalog.validate("wait_delay", {"duration": "soon"})
        assert not result.valid

    def test_negative_duration(self):
        assert not step_catalog.validate("wait_delay", {"duration": -5}).valid

    def test_unsupported_email_service(self):
        result = step_catalog.validate("email_send", {"email_service": "pigeon", "from_email": "a@b.c"})
        assert not result.valid
        assert any("email_service" in e for e in result.errors)

    def test_bad_condition_syntax(self):
        assert not step_catalog.validate("condition", {"condition_logic": "{{x}} >"}).valid

    def test_source_type_aliases(self):
        for alias in ("csv_upload", "google_sheets", "api_endpoint"):
            assert step_catalog.validate("data_source", {"source_type": alias, "required_fields": []}).valid


class TestDescribe:
    def test_lists_all_six_kinds(self):
        kinds = [k["type"] for k in step_catalog.list_kinds()]
        assert kinds == ["data_source", "ai_content", "ai_analysis", "condition", "email_send", "wait_delay"]

    def test_schema_names_required_fields(self):
        described = step_catalog.describe("ai_content")
        assert set(described["schema"]["required"]) == {"template", "brand_voice"}

    def test_unknown_kind_raises(self):
        with pytest.raises(DefinitionError):
            step_catalog.describe("nope")


class TestParse:
    def test_parse_returns_typed_step(self):
        step = step_catalog.parse_step({
            "id": "s1",
            "type": "data_source",
            "name": "Load",
            "config": {"source_type": "google_sheets", "required_fields": ["email"]},
        })
        assert isinstance(step, DataSourceStep)
        assert step.config.source_type == "spreadsheet"

    def test_parse_steps_collects_every_problem(self):
        with pytest.raises(DefinitionError) as exc:
            step_catalog.parse_steps([
                {"id": "s1", "type": "wait_delay", "config": {"duration": 10}},
                {"id": "s2", "type": "mystery", "config": {}},
                {"id": "s3", "type": "ai_content", "config": {"brand_voice": "calm"}},
                {"id": "s1", "type": "wait_delay", "config": {"duration": 5}},
            ])
        errors = exc.value.errors
        assert len(errors) == 3
        assert any("s2" in e and "mystery" in e for e in errors)
        assert any("s3" in e and "template" in e for e in errors)
        assert any("duplicate" in e for e in errors)

    def test_empty_step_list(self):
        with pytest.raises(DefinitionError):
            step_catalog.parse_steps([])

    def test_wait_step_defaults(self):
        [step] = step_catalog.parse_steps([{"id": "w", "type": "wait_delay", "config": {"duration": 0}}])
        assert isinstance(step, WaitDelayStep)
        assert step.position.x == 0
