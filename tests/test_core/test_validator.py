"""Tests for the KOS manifest validator."""

import pytest
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from mado_bridge.core import codes
from mado_bridge.core.codes import CodedConcept
from mado_bridge.core.config import Settings, ValidationConfig
from mado_bridge.core.content_tree import SOPReference, SRContentNode, code_dataset
from mado_bridge.core.types import RelationshipType, ValidationSeverity
from mado_bridge.core.validator import (
    LIBRARY_GROUP_ITEMS,
    KOSValidator,
    Rule,
    ValidationIssue,
    ValidationReport,
    is_valid_uid,
    validate_manifest,
)

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"
LIBRARY_GROUP = "ContentSequence[4]/ContentSequence[0]"
FIRST_LIBRARY_IMAGE = f"{LIBRARY_GROUP}/ContentSequence[7]"
SECOND_LIBRARY_IMAGE = f"{LIBRARY_GROUP}/ContentSequence[8]"
IMAGE_ARTIFACT = CodedConcept("111207", "DCM", "Image artifact(s)")


def rules(report, severity=ValidationSeverity.ERROR):
    return [issue.rule for issue in report.get_issues_by_severity(severity)]


def title_modifier(concept=IMAGE_ARTIFACT):
    return SRContentNode.code_item(
        codes.DOCUMENT_TITLE_MODIFIER, concept, RelationshipType.HAS_CONCEPT_MOD
    )


class TestIsValidUid:
    @pytest.mark.parametrize(
        "uid", ["1.2.840.10008.5.1.4.1.1.88.59", "0", "1.0.3", "2.25.1234567890"]
    )
    def test_valid(self, uid):
        assert is_valid_uid(uid)

    @pytest.mark.parametrize(
        "uid", [None, "", "1.02.3", "1..2", ".1.2", "1.2.", "1.2a", "1." + "2" * 63]
    )
    def test_invalid(self, uid):
        assert not is_valid_uid(uid)


class TestValidationReport:
    """Tests for the report container."""

    def test_empty_report_is_valid(self):
        report = ValidationReport()
        assert report.is_valid
        assert not report.has_errors()
        assert report.counts() == {"error": 0, "warning": 0, "info": 0}

    def test_severity_helpers(self):
        report = ValidationReport()
        report.error("rule-a", "broken", "ContentSequence[0]", uid="1.2")
        report.warning("rule-b", "odd")
        report.info("rule-c", "note")
        assert not report.is_valid
        assert [issue.rule for issue in report.errors] == ["rule-a"]
        assert [issue.rule for issue in report.warnings] == ["rule-b"]
        assert report.get_issues_by_rule("rule-c")[0].severity == ValidationSeverity.INFO
        assert report.errors[0].details == {"uid": "1.2"}

    def test_merge(self):
        first = ValidationReport()
        first.warning("rule-a", "odd")
        second = ValidationReport()
        second.error("rule-b", "broken")
        first.merge(second)
        assert first.counts() == {"error": 1, "warning": 1, "info": 0}

    def test_summary_and_str(self):
        report = ValidationReport()
        report.error("uid-format", "Invalid UID", "ContentSequence[2]")
        summary = report.summary()
        assert summary.startswith("Manifest INVALID: 1 error(s), 0 warning(s), 0 info")
        assert "[ERROR] uid-format: Invalid UID at ContentSequence[2]" in summary

    def test_issue_to_dict(self):
        issue = ValidationIssue(ValidationSeverity.WARNING, "rule", "message", "path", {"n": 1})
        data = issue.to_dict()
        assert data["severity"] == "warning"
        assert data["rule"] == "rule"
        assert data["path"] == "path"
        assert data["details"] == {"n": 1}

    def test_report_to_dict(self):
        report = ValidationReport()
        report.info("rule", "note")
        data = report.to_dict()
        assert data["valid"] is True
        assert len(data["issues"]) == 1


class TestValidManifests:
    def test_fixture_manifest_is_clean(self, kos_dataset, settings):
        report = validate_manifest(kos_dataset, settings=settings)
        assert report.is_valid, report.summary()
        assert report.warnings == []
        assert rules(report, ValidationSeverity.INFO) == [Rule.EVIDENCE_STRUCTURE]

    def test_library_with_key_images_is_clean(self, kos_factory, content_factory, settings, uids):
        content = content_factory(key_images=((codes.OF_INTEREST, uids.instances),))
        report = validate_manifest(kos_factory(content=content), allow_duplicates=True, settings=settings)
        assert report.is_valid, report.summary()


class TestTitleModifier:
    """Quality and best-in-set designations require a Document Title Modifier."""

    def test_quality_issue_without_modifier(self, kos_factory, content_factory, settings, uids):
        content = content_factory(
            include_library=False,
            key_images=((codes.QUALITY_ISSUE, uids.instances[:1]),),
        )
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert len(report.errors) == 1
        error = report.errors[0]
        assert error.rule == Rule.TITLE_MODIFIER
        assert "113011" in error.message
        assert "CID 7011" in error.message
        assert error.path == "ContentSequence[4]"

    def test_quality_issue_with_sibling_modifier(self, kos_factory, content_factory, settings, uids):
        content = content_factory(
            include_library=False,
            key_images=((codes.QUALITY_ISSUE, uids.instances[:1]),),
        )
        content.append(title_modifier())
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert report.errors == []

    def test_title_requires_modifier(self, kos_factory, settings):
        dataset = kos_factory(title=codes.BEST_IN_SET)
        report = validate_manifest(dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.TITLE_MODIFIER)
        assert len(issues) == 1
        assert issues[0].details["context_group"] == "CID 7012"
        assert issues[0].path == "ConceptNameCodeSequence"

    def test_one_finding_per_context_group(self, kos_factory, content_factory, settings, uids):
        content = content_factory(
            include_library=False,
            key_images=(
                (codes.QUALITY_ISSUE, uids.instances[:1]),
                (codes.REJECTED_FOR_QUALITY, uids.instances[1:]),
                (codes.BEST_IN_SET, uids.instances[:1]),
            ),
        )
        report = validate_manifest(kos_factory(content=content), allow_duplicates=True, settings=settings)
        groups = sorted(i.details["context_group"] for i in report.get_issues_by_rule(Rule.TITLE_MODIFIER))
        assert groups == ["CID 7011", "CID 7012"]

    def test_modifier_exempt_from_top_level_rule(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(title_modifier())
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert Rule.TOP_LEVEL_RELATIONSHIP not in rules(report)


class TestDuplicateReferences:
    """Library entries and key-image items referencing the same instance."""

    @pytest.fixture
    def dataset(self, kos_factory, content_factory, uids):
        content = content_factory(key_images=((codes.OF_INTEREST, uids.instances[:1]),))
        return kos_factory(content=content)

    def test_duplicates_allowed(self, dataset, settings):
        report = validate_manifest(dataset, allow_duplicates=True, settings=settings)
        assert report.get_issues_by_rule(Rule.DUPLICATE_REFERENCE) == []
        assert report.is_valid

    def test_duplicates_rejected(self, dataset, settings, uids):
        report = validate_manifest(dataset, allow_duplicates=False, settings=settings)
        duplicates = report.get_issues_by_rule(Rule.DUPLICATE_REFERENCE)
        assert len(duplicates) == 1
        assert duplicates[0].path == "ContentSequence[5]"
        assert duplicates[0].details["first_path"] == FIRST_LIBRARY_IMAGE
        assert duplicates[0].details["sop_instance_uid"] == uids.instances[0]

    def test_default_comes_from_settings(self, dataset):
        allowed = Settings(_env_file=None, validation=ValidationConfig(allow_duplicate_references=True))
        assert KOSValidator(allowed).validate(dataset).is_valid
        rejected = Settings(_env_file=None)
        assert not KOSValidator(rejected).validate(dataset).is_valid


class TestRootRules:
    def test_not_kos(self, kos_factory, settings):
        report = validate_manifest(kos_factory(SOPClassUID=CT_IMAGE_STORAGE), settings=settings)
        assert rules(report) == [Rule.SOP_CLASS]

    def test_two_descriptions(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.insert(1, SRContentNode.text_item(codes.KEY_OBJECT_DESCRIPTION, "Second"))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        issues = report.get_issues_by_rule(Rule.KOS_DESCRIPTION_COUNT)
        assert len(issues) == 1
        assert "Found 2" in issues[0].message
        assert issues[0].details["count"] == 2
        assert issues[0].path == "ContentSequence[1]"

    def test_missing_title(self, kos_factory, settings):
        report = validate_manifest(kos_factory(ConceptNameCodeSequence=None), settings=settings)
        assert Rule.DOCUMENT_TITLE in rules(report)

    def test_root_not_container(self, kos_factory, settings):
        report = validate_manifest(kos_factory(ValueType="TEXT"), settings=settings)
        assert Rule.VALUE_TYPE in rules(report)

    def test_empty_content(self, kos_factory, settings):
        report = validate_manifest(kos_factory(content=[]), settings=settings)
        assert Rule.CONTENT_EMPTY in rules(report)
        assert Rule.CONTENT_NO_REFERENCES not in rules(report)

    def test_no_references_anywhere(self, kos_factory, content_factory, settings):
        dataset = kos_factory(
            content=content_factory(include_library=False),
            CurrentRequestedProcedureEvidenceSequence=None,
        )
        report = validate_manifest(dataset, settings=settings)
        assert Rule.EVIDENCE_MISSING in rules(report)
        assert Rule.NO_REFERENCES in rules(report, ValidationSeverity.INFO)

    def test_top_level_relationship(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(
            SRContentNode.text_item(codes.SERIES_DESCRIPTION, "x", RelationshipType.HAS_OBS_CONTEXT)
        )
        report = validate_manifest(kos_factory(content=content), settings=settings)
        issues = report.get_issues_by_rule(Rule.TOP_LEVEL_RELATIONSHIP)
        assert [issue.path for issue in issues] == ["ContentSequence[5]"]


class TestContentItems:
    def test_invalid_relationship_type(self, kos_dataset, settings):
        kos_dataset.ContentSequence[0].RelationshipType = "HAS PROPERTIES"
        report = validate_manifest(kos_dataset, settings=settings)
        assert Rule.RELATIONSHIP_TYPE in rules(report)

    def test_value_type_not_allowed(self, kos_dataset, settings):
        kos_dataset.ContentSequence[0].ValueType = "DATETIME"
        report = validate_manifest(kos_dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.VALUE_TYPE)
        assert [issue.path for issue in issues] == ["ContentSequence[0]"]

    def test_code_cardinality(self, kos_dataset, settings):
        kos_dataset.ContentSequence[1].ConceptCodeSequence.append(
            code_dataset(CodedConcept("MR", "DCM", "MR"))
        )
        report = validate_manifest(kos_dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.MISSING_VALUE)
        assert len(issues) == 1
        assert "found 2" in issues[0].message

    def test_text_without_value(self, kos_dataset, settings):
        del kos_dataset.ContentSequence[0].TextValue
        report = validate_manifest(kos_dataset, settings=settings)
        assert [i.path for i in report.get_issues_by_rule(Rule.MISSING_VALUE)] == ["ContentSequence[0]"]

    def test_invalid_uidref(self, kos_dataset, settings):
        kos_dataset.ContentSequence[2].UID = "1.2.03"
        report = validate_manifest(kos_dataset, settings=settings)
        assert Rule.UID_FORMAT in rules(report)

    def test_image_without_references(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(SRContentNode.image_item([], concept=codes.OF_INTEREST))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert [i.path for i in report.get_issues_by_rule(Rule.MISSING_VALUE)] == ["ContentSequence[5]"]

    def test_purpose_of_reference(self, kos_dataset, settings):
        image = kos_dataset.ContentSequence[4].ContentSequence[0].ContentSequence[7]
        image.ReferencedSOPSequence[0].PurposeOfReferenceCodeSequence = Sequence(
            [code_dataset(codes.OF_INTEREST)]
        )
        report = validate_manifest(kos_dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.PURPOSE_OF_REFERENCE)
        assert [issue.path for issue in issues] == [FIRST_LIBRARY_IMAGE]

    def test_empty_container_is_warning(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(SRContentNode.container(CodedConcept("121070", "DCM", "Findings"), []))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert report.is_valid
        assert Rule.EMPTY_CONTAINER in rules(report, ValidationSeverity.WARNING)

    def test_leaf_with_children_is_warning(self, kos_factory, content_factory, settings):
        content = content_factory()
        content[0] = SRContentNode(
            "TEXT",
            "CONTAINS",
            codes.KEY_OBJECT_DESCRIPTION,
            "Key images",
            (SRContentNode.text_item(codes.SERIES_DESCRIPTION, "nested"),),
        )
        report = validate_manifest(kos_factory(content=content), settings=settings)
        issues = report.get_issues_by_rule(Rule.LEAF_CHILDREN)
        assert [issue.severity for issue in issues] == [ValidationSeverity.WARNING]

    def test_num_with_frames_allowed(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(SRContentNode.num_item(codes.NUMBER_OF_FRAMES, 30, RelationshipType.CONTAINS))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert report.is_valid, report.summary()


class TestReferences:
    def test_orphan_reference(self, kos_factory, content_factory, settings):
        content = content_factory(key_images=((codes.OF_INTEREST, ("1.2.826.0.1.3680043.8.498.999",)),))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        issues = report.get_issues_by_rule(Rule.ORPHAN_REFERENCE)
        assert len(issues) == 1
        assert issues[0].path == "ContentSequence[5]"
        assert issues[0].details["sop_instance_uid"] == "1.2.826.0.1.3680043.8.498.999"

    def test_references_without_evidence(self, kos_factory, settings, uids):
        report = validate_manifest(
            kos_factory(CurrentRequestedProcedureEvidenceSequence=None), settings=settings
        )
        assert rules(report) == [
            Rule.EVIDENCE_MISSING,
            Rule.ORPHAN_REFERENCE,
            Rule.ORPHAN_REFERENCE,
        ]
        orphans = report.get_issues_by_rule(Rule.ORPHAN_REFERENCE)
        assert [issue.path for issue in orphans] == [FIRST_LIBRARY_IMAGE, SECOND_LIBRARY_IMAGE]
        assert [issue.details["sop_instance_uid"] for issue in orphans] == list(uids.instances)

    def test_self_reference(self, kos_factory, content_factory, settings, uids):
        content = content_factory(key_images=((codes.OF_INTEREST, (uids.kos,)),))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert Rule.SELF_REFERENCE in rules(report)

    def test_invalid_reference_uids(self, kos_factory, content_factory, settings):
        content = content_factory()
        content.append(
            SRContentNode.image_item([SOPReference("1.2.x", "1.02")], concept=codes.OF_INTEREST)
        )
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert rules(report) == [Rule.UID_FORMAT, Rule.UID_FORMAT]

    def test_unreferenced_evidence(self, kos_factory, content_factory, settings, uids):
        content = content_factory(instance_uids=uids.instances[:1])
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert report.is_valid
        issues = report.get_issues_by_rule(Rule.UNREFERENCED_EVIDENCE)
        assert len(issues) == 1
        assert issues[0].details["sop_instance_uids"] == [uids.instances[1]]


class TestEvidence:
    def test_missing_series_uid(self, kos_dataset, settings):
        del kos_dataset.CurrentRequestedProcedureEvidenceSequence[0].ReferencedSeriesSequence[
            0
        ].SeriesInstanceUID
        report = validate_manifest(kos_dataset, settings=settings)
        assert Rule.EVIDENCE_SERIES in rules(report)

    def test_missing_instance_uid(self, kos_dataset, settings):
        sop = (
            kos_dataset.CurrentRequestedProcedureEvidenceSequence[0]
            .ReferencedSeriesSequence[0]
            .ReferencedSOPSequence[1]
        )
        del sop.ReferencedSOPInstanceUID
        report = validate_manifest(kos_dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.EVIDENCE_INSTANCE)
        assert [issue.path for issue in issues] == [
            "CurrentRequestedProcedureEvidenceSequence[0]"
            "/ReferencedSeriesSequence[0]/ReferencedSOPSequence[1]"
        ]

    def test_empty_series_sequence(self, kos_dataset, settings):
        kos_dataset.CurrentRequestedProcedureEvidenceSequence[0].ReferencedSeriesSequence = Sequence()
        report = validate_manifest(kos_dataset, settings=settings)
        assert Rule.EVIDENCE_SERIES in rules(report)

    def test_study_without_uid(self, kos_dataset, settings):
        kos_dataset.CurrentRequestedProcedureEvidenceSequence.append(Dataset())
        report = validate_manifest(kos_dataset, settings=settings)
        assert Rule.EVIDENCE_STUDY in rules(report)


class TestRetrieveInfo:
    @pytest.mark.parametrize(
        "fields, rule",
        [
            ({"retrieve_url": "ftp://pacs.example.org/x"}, Rule.RETRIEVE_URL),
            ({"retrieve_ae_title": "A" * 17}, Rule.RETRIEVE_AE_TITLE),
            ({"retrieve_location_uid": "1.02.3"}, Rule.RETRIEVE_LOCATION_UID),
        ],
    )
    def test_warnings(self, kos_factory, evidence_factory, settings, fields, rule):
        dataset = kos_factory(evidence=evidence_factory(**fields))
        report = validate_manifest(dataset, settings=settings)
        assert report.is_valid
        assert rules(report, ValidationSeverity.WARNING) == [rule]

    def test_checks_can_be_disabled(self, kos_factory, evidence_factory):
        settings = Settings(_env_file=None, validation=ValidationConfig(check_retrieve_info=False))
        dataset = kos_factory(evidence=evidence_factory(retrieve_url="not a url"))
        report = validate_manifest(dataset, settings=settings)
        assert report.warnings == []


class TestTimezoneOffset:
    @pytest.mark.parametrize("offset", ["+0100", "-0530", "+1400", "+0000"])
    def test_valid_offsets(self, kos_factory, settings, offset):
        report = validate_manifest(kos_factory(TimezoneOffsetFromUTC=offset), settings=settings)
        assert report.get_issues_by_rule(Rule.TIMEZONE_OFFSET) == []

    def test_missing_offset(self, kos_factory, settings):
        report = validate_manifest(kos_factory(TimezoneOffsetFromUTC=None), settings=settings)
        assert rules(report) == [Rule.TIMEZONE_OFFSET]
        assert report.errors[0].path == "TimezoneOffsetFromUTC"

    @pytest.mark.parametrize("offset", ["0100", "+01:00", "+1500", "+0160", "UTC"])
    def test_malformed_offset(self, kos_factory, settings, offset):
        report = validate_manifest(kos_factory(TimezoneOffsetFromUTC=offset), settings=settings)
        issues = report.get_issues_by_rule(Rule.TIMEZONE_OFFSET)
        assert len(issues) == 1
        assert issues[0].details["offset"] == offset


class TestManifestTitle:
    def test_manifest_with_description_accepted(self, kos_factory, settings):
        dataset = kos_factory(title=codes.MANIFEST_WITH_DESCRIPTION)
        assert validate_manifest(dataset, settings=settings).is_valid

    def test_other_title_rejected(self, kos_factory, settings):
        report = validate_manifest(kos_factory(title=codes.OF_INTEREST), settings=settings)
        assert rules(report) == [Rule.MANIFEST_TITLE]
        assert "113000" in report.errors[0].message
        assert report.errors[0].path == "ConceptNameCodeSequence"


class TestImageLibrary:
    """TID 1600 group descriptors and entry constraints."""

    @pytest.mark.parametrize("concept", LIBRARY_GROUP_ITEMS, ids=lambda c: c.value)
    def test_missing_group_item(self, kos_dataset, settings, concept):
        group = kos_dataset.ContentSequence[4].ContentSequence[0]
        group.ContentSequence = Sequence(
            [
                item
                for item in group.ContentSequence
                if item.ConceptNameCodeSequence[0].CodeValue != concept.value
            ]
        )
        report = validate_manifest(kos_dataset, settings=settings)
        issues = report.get_issues_by_rule(Rule.LIBRARY_GROUP)
        assert [issue.details["concept"] for issue in issues] == [concept.value]
        assert issues[0].path == LIBRARY_GROUP
        assert issues[0].severity == ValidationSeverity.ERROR

    def test_group_without_entries(self, kos_factory, content_factory, settings):
        content = content_factory(instance_uids=())
        report = validate_manifest(kos_factory(content=content), settings=settings)
        assert Rule.LIBRARY_GROUP in rules(report, ValidationSeverity.WARNING)
        assert Rule.LIBRARY_GROUP not in rules(report)

    def test_empty_library(self, kos_factory, content_factory, settings):
        content = content_factory(include_library=False)
        content.append(SRContentNode.container(codes.IMAGE_LIBRARY, []))
        report = validate_manifest(kos_factory(content=content), settings=settings)
        issues = report.get_issues_by_rule(Rule.LIBRARY_GROUP)
        assert [issue.severity for issue in issues] == [ValidationSeverity.ERROR]
        assert issues[0].path == "ContentSequence[4]"

    def test_entry_with_two_references(self, kos_dataset, settings, uids):
        image = kos_dataset.ContentSequence[4].ContentSequence[0].ContentSequence[7]
        second = Dataset()
        second.ReferencedSOPClassUID = CT_IMAGE_STORAGE
        second.ReferencedSOPInstanceUID = uids.instances[1]
        image.ReferencedSOPSequence.append(second)
        report = validate_manifest(kos_dataset, allow_duplicates=True, settings=settings)
        assert rules(report) == [Rule.LIBRARY_ENTRY]
        assert report.errors[0].path == FIRST_LIBRARY_IMAGE
        assert report.errors[0].details["count"] == 2

    def test_instance_number_must_be_text(self, kos_dataset, settings):
        image = kos_dataset.ContentSequence[4].ContentSequence[0].ContentSequence[7]
        image.ContentSequence[0] = SRContentNode.num_item(codes.INSTANCE_NUMBER, 10).to_dataset()
        report = validate_manifest(kos_dataset, settings=settings)
        assert rules(report) == [Rule.INSTANCE_NUMBER_TYPE]
        assert report.errors[0].path == f"{FIRST_LIBRARY_IMAGE}/ContentSequence[0]"

    def test_composite_entry_is_warning(self, kos_dataset, settings):
        kos_dataset.ContentSequence[4].ContentSequence[0].ContentSequence[7].ValueType = "COMPOSITE"
        report = validate_manifest(kos_dataset, settings=settings)
        assert report.is_valid
        assert rules(report, ValidationSeverity.WARNING) == [Rule.LIBRARY_ENTRY]


class TestMadoProfileSwitch:
    def test_rules_can_be_disabled(self, kos_factory):
        settings = Settings(_env_file=None, validation=ValidationConfig(mado_profile=False))
        dataset = kos_factory(title=codes.OF_INTEREST, TimezoneOffsetFromUTC=None)
        group = dataset.ContentSequence[4].ContentSequence[0]
        group.ContentSequence = Sequence(
            [
                item
                for item in group.ContentSequence
                if item.ConceptNameCodeSequence[0].CodeValue != codes.SERIES_DATE.value
            ]
        )
        report = validate_manifest(dataset, settings=settings)
        assert report.errors == [], report.summary()
