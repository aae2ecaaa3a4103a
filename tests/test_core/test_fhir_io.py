"""Tests for bundle JSON loading, dumping and schema checks."""

import json

import pytest
from fhir.resources.bundle import Bundle

from mado_bridge.core import fhir_io
from mado_bridge.core.exceptions import BundleParseError, SchemaValidationError
from mado_bridge.core.fhir_io import dump_bundle, load_bundle, validate_bundle_schema
from mado_bridge.core.forward import to_bundle

MINIMAL_BUNDLE = '{"resourceType": "Bundle", "type": "document"}'


@pytest.fixture
def bundle_data(kos_dataset, settings):
    """Forward-mapped fixture manifest as JSON data."""
    return json.loads(to_bundle(kos_dataset, settings).model_dump_json())


def patient_of(data):
    return next(
        e["resource"] for e in data["entry"] if e["resource"]["resourceType"] == "Patient"
    )


def test_bundle_model_imported_at_module_level():
    assert fhir_io.Bundle is Bundle


class TestLoadBundle:
    def test_load_from_file(self, temp_dir):
        path = temp_dir / "bundle.json"
        path.write_text(MINIMAL_BUNDLE, encoding="utf-8")
        bundle = load_bundle(path)
        assert isinstance(bundle, Bundle)
        assert bundle.type == "document"

    def test_load_from_string_path(self, temp_dir):
        path = temp_dir / "bundle.json"
        path.write_text(MINIMAL_BUNDLE, encoding="utf-8")
        assert load_bundle(str(path)).type == "document"

    def test_load_from_json_text(self):
        assert load_bundle("  " + MINIMAL_BUNDLE).entry is None

    def test_missing_file(self, temp_dir):
        with pytest.raises(BundleParseError) as exc_info:
            load_bundle(temp_dir / "missing.json")
        assert exc_info.value.error_code == "FILE_NOT_READABLE"
        assert exc_info.value.context["file_path"].endswith("missing.json")

    def test_invalid_json(self):
        with pytest.raises(BundleParseError) as exc_info:
            load_bundle('{"resourceType": ')
        assert exc_info.value.error_code == "INVALID_JSON"
        assert exc_info.value.context["source"] == "<string>"
        assert exc_info.value.context["error"]

    def test_json_array_rejected(self, temp_dir):
        path = temp_dir / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(SchemaValidationError) as exc_info:
            load_bundle(path)
        assert exc_info.value.error_code == "SCHEMA_INVALID"

    def test_other_resource_rejected(self):
        with pytest.raises(SchemaValidationError):
            load_bundle('{"resourceType": "Patient", "gender": "female"}')

    def test_invalid_resource_reports_location(self, temp_dir, bundle_data):
        patient_of(bundle_data)["birthDate"] = "not-a-date"
        path = temp_dir / "bad.json"
        path.write_text(json.dumps(bundle_data), encoding="utf-8")
        with pytest.raises(SchemaValidationError) as exc_info:
            load_bundle(path)
        locations = [err["loc"] for err in exc_info.value.context["errors"]]
        assert any("birthDate" in loc for loc in locations)


class TestDumpBundle:
    def test_dump_returns_indented_json(self):
        text = dump_bundle(Bundle.model_validate_json(MINIMAL_BUNDLE))
        assert text.startswith('{\n  "resourceType": "Bundle"')

    def test_dump_keeps_non_ascii(self, kos_factory, settings):
        text = dump_bundle(to_bundle(kos_factory(PatientName="Müller^Jürgen"), settings))
        assert "Müller" in text

    def test_dump_to_file(self, temp_dir, kos_dataset, settings):
        bundle = to_bundle(kos_dataset, settings)
        path = temp_dir / "out" / "bundle.json"
        dump_bundle(bundle, path)
        assert json.loads(path.read_text(encoding="utf-8")) == json.loads(bundle.model_dump_json())
        assert load_bundle(path).model_dump_json() == bundle.model_dump_json()


class TestSchemaValidation:
    def test_forward_bundle_passes(self, bundle_data):
        bundle = validate_bundle_schema(bundle_data)
        assert isinstance(bundle, Bundle)
        assert len(bundle.entry) == len(bundle_data["entry"])

    def test_model_passes_through(self, kos_dataset, settings):
        bundle = to_bundle(kos_dataset, settings)
        assert validate_bundle_schema(bundle) is bundle

    def test_invalid_resource_fails(self, bundle_data):
        patient_of(bundle_data)["birthDate"] = "not-a-date"
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_bundle_schema(bundle_data)
        assert exc_info.value.error_code == "SCHEMA_INVALID"
        assert exc_info.value.context["errors"]

    def test_unknown_element_fails(self, bundle_data):
        patient_of(bundle_data)["favouriteColour"] = "blue"
        with pytest.raises(SchemaValidationError):
            validate_bundle_schema(bundle_data)
