"""Structural and referential validation of KOS manifests.

Walks the SR content tree and the evidence hierarchy of a Key Object
Selection document and reports graded findings:

- Evidence completeness (study/series/instance UIDs and sequences)
- TID 2010 content grammar (relationship and value types, companion attributes)
- Cardinality rules (Key Object Description, Document Title Modifier)
- Cross references (self reference, duplicates, orphans, unreferenced evidence)
- Retrieval descriptors (WADO-RS URL, AE title, location UID)
- MADO profile (document title, timezone offset, TID 1600 Image Library)

No rule aborts validation; every finding lands in the ValidationReport.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pydicom.dataset import Dataset

from mado_bridge.core import codes
from mado_bridge.core.codes import TITLE_MODIFIER_REQUIREMENTS, requires_title_modifier
from mado_bridge.core.config import Settings, get_settings
from mado_bridge.core.constants import KOS_SOP_CLASS_UID, MAX_UID_LENGTH
from mado_bridge.core.content_tree import (
    ContentTreeStats,
    SRContentNode,
    child_path,
    has_reference,
    is_title_modifier,
    walk,
)
from mado_bridge.core.evidence import EvidenceHierarchy
from mado_bridge.core.types import (
    REFERENCE_VALUE_TYPES,
    RelationshipType,
    ValidationSeverity,
    ValueType,
)
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)

_UID_RE = re.compile(r"^(0|[1-9][0-9]*)(\.(0|[1-9][0-9]*))*$")
_URL_RE = re.compile(r"^https?://\S+$")
_OFFSET_RE = re.compile(r"^[+-](\d{2})(\d{2})$")

EVIDENCE_PATH = "CurrentRequestedProcedureEvidenceSequence"

RELATIONSHIP_TYPES = frozenset(r.value for r in RelationshipType)
ALLOWED_VALUE_TYPES = frozenset(v.value for v in ValueType)

MANIFEST_TITLES = (codes.MANIFEST, codes.MANIFEST_WITH_DESCRIPTION)
LIBRARY_ENTRY_TYPES = frozenset({ValueType.IMAGE.value, ValueType.COMPOSITE.value})
LIBRARY_GROUP_ITEMS = (
    codes.MODALITY,
    codes.SERIES_INSTANCE_UID,
    codes.SERIES_DESCRIPTION,
    codes.SERIES_NUMBER,
    codes.SERIES_DATE,
    codes.SERIES_TIME,
    codes.NUMBER_OF_SERIES_RELATED_INSTANCES,
)


def is_valid_uid(uid: str | None) -> bool:
    """Check DICOM UID syntax: dotted numeric components, no leading zeros, <= 64 chars."""
    return bool(uid) and len(uid) <= MAX_UID_LENGTH and _UID_RE.match(uid) is not None


# =============================================================================
# Report
# =============================================================================


@dataclass
class ValidationIssue:
    """A single validation finding.

    Attributes:
        severity: Finding severity
        rule: Identifier of the rule that produced the finding
        message: Human-readable description
        path: Location in the dataset, e.g. ``ContentSequence[2]/ContentSequence[0]``
        details: Extra structured data (UIDs, counts)

    """

    severity: ValidationSeverity
    rule: str
    message: str
    path: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        location = f" at {self.path}" if self.path else ""
        return f"[{self.severity.name}] {self.rule}: {self.message}{location}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "rule": self.rule,
            "message": self.message,
            "path": self.path,
            "details": self.details,
        }


@dataclass
class ValidationReport:
    """Accumulated findings of one validation run.

    Not thread-safe; each validation run owns its report.
    """

    issues: list[ValidationIssue] = field(default_factory=list)

    def add(
        self,
        severity: ValidationSeverity,
        rule: str,
        message: str,
        path: str = "",
        **details: Any,
    ) -> ValidationIssue:
        issue = ValidationIssue(severity, rule, message, path, details)
        self.issues.append(issue)
        return issue

    def error(self, rule: str, message: str, path: str = "", **details: Any) -> ValidationIssue:
        return self.add(ValidationSeverity.ERROR, rule, message, path, **details)

    def warning(self, rule: str, message: str, path: str = "", **details: Any) -> ValidationIssue:
        return self.add(ValidationSeverity.WARNING, rule, message, path, **details)

    def info(self, rule: str, message: str, path: str = "", **details: Any) -> ValidationIssue:
        return self.add(ValidationSeverity.INFO, rule, message, path, **details)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors()

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def get_issues_by_severity(self, severity: ValidationSeverity) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == severity]

    def get_issues_by_rule(self, rule: str) -> list[ValidationIssue]:
        return [i for i in self.issues if i.rule == rule]

    @property
    def errors(self) -> list[ValidationIssue]:
        return self.get_issues_by_severity(ValidationSeverity.ERROR)

    @property
    def warnings(self) -> list[ValidationIssue]:
        return self.get_issues_by_severity(ValidationSeverity.WARNING)

    def counts(self) -> dict[str, int]:
        """Finding counts keyed by severity value."""
        return {
            severity.value: len(self.get_issues_by_severity(severity))
            for severity in ValidationSeverity
        }

    def merge(self, other: ValidationReport) -> None:
        self.issues.extend(other.issues)

    def summary(self) -> str:
        counts = self.counts()
        status = "VALID" if self.is_valid else "INVALID"
        lines = [
            f"Manifest {status}: {counts['error']} error(s), "
            f"{counts['warning']} warning(s), {counts['info']} info"
        ]
        lines.extend(f"  {issue}" for issue in self.issues)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.is_valid,
            "counts": self.counts(),
            "issues": [issue.to_dict() for issue in self.issues],
        }


# =============================================================================
# Rules
# =============================================================================


class Rule:
    """Rule identifiers used in ValidationIssue.rule."""

    SOP_CLASS = "sop-class"
    EVIDENCE_MISSING = "evidence-missing"
    EVIDENCE_STUDY = "evidence-study"
    EVIDENCE_SERIES = "evidence-series"
    EVIDENCE_INSTANCE = "evidence-instance"
    EVIDENCE_STRUCTURE = "evidence-structure"
    RETRIEVE_URL = "retrieve-url"
    RETRIEVE_AE_TITLE = "retrieve-ae-title"
    RETRIEVE_LOCATION_UID = "retrieve-location-uid"
    DOCUMENT_TITLE = "document-title"
    CONTENT_EMPTY = "content-empty"
    CONTENT_NO_REFERENCES = "content-no-references"
    RELATIONSHIP_TYPE = "relationship-type"
    TOP_LEVEL_RELATIONSHIP = "top-level-relationship"
    VALUE_TYPE = "value-type"
    MISSING_VALUE = "missing-value"
    UID_FORMAT = "uid-format"
    PURPOSE_OF_REFERENCE = "purpose-of-reference"
    EMPTY_CONTAINER = "empty-container"
    LEAF_CHILDREN = "leaf-children"
    TITLE_MODIFIER = "title-modifier"
    KOS_DESCRIPTION_COUNT = "kos-description-count"
    SELF_REFERENCE = "self-reference"
    DUPLICATE_REFERENCE = "duplicate-reference"
    ORPHAN_REFERENCE = "orphan-reference"
    UNREFERENCED_EVIDENCE = "unreferenced-evidence"
    NO_REFERENCES = "no-references"
    MANIFEST_TITLE = "manifest-title"
    TIMEZONE_OFFSET = "timezone-offset"
    LIBRARY_GROUP = "library-group"
    LIBRARY_ENTRY = "library-entry"
    INSTANCE_NUMBER_TYPE = "instance-number-type"


@dataclass
class _WalkState:
    """Walk-local accumulator passed through the recursive content walk."""

    report: ValidationReport
    evidence_uids: set[str]
    self_uid: str | None
    allow_duplicates: bool
    seen: dict[str, str] = field(default_factory=dict)
    references: int = 0


class KOSValidator:
    """Validates KOS manifests against TID 2010 structure and evidence rules.

    Example:
        >>> report = KOSValidator().validate(pydicom.dcmread("manifest.dcm"))
        >>> if not report.is_valid:
        ...     print(report.summary())

    """

    def __init__(
        self,
        settings: Settings | None = None,
        allow_duplicate_references: bool | None = None,
    ):
        self.settings = settings or get_settings()
        if allow_duplicate_references is None:
            allow_duplicate_references = self.settings.validation.allow_duplicate_references
        self.allow_duplicate_references = allow_duplicate_references

    def validate(self, dataset: Dataset) -> ValidationReport:
        """Validate a KOS dataset.

        Args:
            dataset: KOS manifest

        Returns:
            Report with all findings

        """
        report = ValidationReport()
        sop_class = dataset.get("SOPClassUID")
        if sop_class != KOS_SOP_CLASS_UID:
            report.error(
                Rule.SOP_CLASS,
                f"SOP Class UID {sop_class!r} is not Key Object Selection",
                "SOPClassUID",
            )
        if self.settings.validation.mado_profile:
            self.check_timezone_offset(dataset, report)
        report.merge(
            self.validate_tree(
                SRContentNode.from_dataset(dataset),
                EvidenceHierarchy.from_dataset(dataset),
                dataset.get("SOPInstanceUID"),
            )
        )
        return report

    def validate_tree(
        self,
        content: SRContentNode,
        evidence: EvidenceHierarchy,
        sop_instance_uid: str | None = None,
    ) -> ValidationReport:
        """Validate an already-parsed content tree and evidence hierarchy.

        Args:
            content: Root content item (the document itself)
            evidence: Evidence hierarchy of the document
            sop_instance_uid: The manifest's own SOP Instance UID

        Returns:
            Report with all findings

        """
        report = ValidationReport()
        self.check_evidence(evidence, report)
        self.check_root(content, report)
        if self.settings.validation.mado_profile:
            self.check_manifest_title(content, report)
            self.check_image_library(content, report)

        state = _WalkState(
            report=report,
            evidence_uids=evidence.instance_uids(),
            self_uid=str(sop_instance_uid) if sop_instance_uid else None,
            allow_duplicates=self.allow_duplicate_references,
        )
        for index, child in enumerate(content.children):
            self._walk(child, child_path("", index), state)
        self.check_cross_references(evidence, state)

        stats = ContentTreeStats.of(content)
        counts = report.counts()
        logger.info(
            "manifest_validated",
            errors=counts["error"],
            warnings=counts["warning"],
            infos=counts["info"],
            content_items=sum(stats.by_value_type.values()),
            references=state.references,
        )
        return report

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    def check_evidence(self, evidence: EvidenceHierarchy, report: ValidationReport) -> None:
        """Evidence completeness and retrieval descriptor checks."""
        if not evidence.present or not evidence.studies:
            report.error(
                Rule.EVIDENCE_MISSING,
                "Current Requested Procedure Evidence Sequence is missing or empty",
                EVIDENCE_PATH,
            )
            return

        for s, study in enumerate(evidence.studies):
            study_path = f"{EVIDENCE_PATH}[{s}]"
            if not study.study_uid:
                report.error(Rule.EVIDENCE_STUDY, "Study Instance UID missing", study_path)
            elif not is_valid_uid(study.study_uid):
                report.error(
                    Rule.UID_FORMAT,
                    f"Invalid Study Instance UID {study.study_uid!r}",
                    study_path,
                )
            if not study.series:
                report.error(
                    Rule.EVIDENCE_SERIES,
                    "Referenced Series Sequence missing or empty",
                    study_path,
                )

            for r, series in enumerate(study.series):
                series_path = f"{study_path}/ReferencedSeriesSequence[{r}]"
                if not series.series_uid:
                    report.error(
                        Rule.EVIDENCE_SERIES, "Series Instance UID missing", series_path
                    )
                elif not is_valid_uid(series.series_uid):
                    report.error(
                        Rule.UID_FORMAT,
                        f"Invalid Series Instance UID {series.series_uid!r}",
                        series_path,
                    )
                if not series.instances:
                    report.error(
                        Rule.EVIDENCE_INSTANCE,
                        "Referenced SOP Sequence missing or empty",
                        series_path,
                    )
                for i, instance in enumerate(series.instances):
                    sop_path = f"{series_path}/ReferencedSOPSequence[{i}]"
                    if not instance.instance_uid or not instance.class_uid:
                        report.error(
                            Rule.EVIDENCE_INSTANCE,
                            "Referenced SOP Class/Instance UID missing",
                            sop_path,
                        )
                if self.settings.validation.check_retrieve_info:
                    self.check_retrieve_info(series, series_path, report)

        studies, series_count, instances = evidence.counts
        report.info(
            Rule.EVIDENCE_STRUCTURE,
            f"Evidence references {studies} study(ies), {series_count} series, "
            f"{instances} instance(s)",
            EVIDENCE_PATH,
            studies=studies,
            series=series_count,
            instances=instances,
        )

    def check_retrieve_info(self, series, path: str, report: ValidationReport) -> None:
        """Profile-recommended checks on series retrieval descriptors."""
        url = series.retrieve_url
        if url is not None and not _URL_RE.match(url):
            report.warning(
                Rule.RETRIEVE_URL,
                f"Retrieve URL is not a well-formed http(s) URL: {url!r}",
                path,
            )
        ae_title = series.retrieve_ae_title
        if ae_title:
            limit = self.settings.validation.max_ae_title_length
            if len(ae_title) > limit:
                report.warning(
                    Rule.RETRIEVE_AE_TITLE,
                    f"Retrieve AE Title exceeds {limit} characters: {ae_title!r}",
                    path,
                )
            if not ae_title.isprintable():
                report.warning(
                    Rule.RETRIEVE_AE_TITLE,
                    "Retrieve AE Title contains non-printable characters",
                    path,
                )
        location = series.retrieve_location_uid
        if location is not None and not is_valid_uid(location):
            report.warning(
                Rule.RETRIEVE_LOCATION_UID,
                f"Retrieve Location UID is not a valid UID: {location!r}",
                path,
            )

    # ------------------------------------------------------------------
    # Root-level rules
    # ------------------------------------------------------------------

    def check_root(self, content: SRContentNode, report: ValidationReport) -> None:
        """Rules evaluated on the document root and its direct children."""
        if content.value_type != ValueType.CONTAINER:
            report.error(
                Rule.VALUE_TYPE,
                f"Root content item must be a CONTAINER, got {content.value_type!r}",
                "ValueType",
            )
        if content.concept_name is None or not content.concept_name.is_complete:
            report.error(
                Rule.DOCUMENT_TITLE,
                "Document title (Concept Name Code Sequence) missing or incomplete",
                "ConceptNameCodeSequence",
            )

        if not content.children:
            report.error(Rule.CONTENT_EMPTY, "Content Sequence is missing or empty", "ContentSequence")
        elif not has_reference(content):
            report.error(
                Rule.CONTENT_NO_REFERENCES,
                "Content tree contains no IMAGE, COMPOSITE or WAVEFORM reference",
                "ContentSequence",
            )

        descriptions = [
            index
            for index, child in enumerate(content.children)
            if child.value_type == ValueType.TEXT
            and child.has_concept(codes.KEY_OBJECT_DESCRIPTION)
        ]
        if len(descriptions) > 1:
            report.error(
                Rule.KOS_DESCRIPTION_COUNT,
                f"Found {len(descriptions)} Key Object Description items; at most 1 allowed",
                child_path("", descriptions[1]),
                count=len(descriptions),
            )

        for index, child in enumerate(content.children):
            if child.relationship_type == RelationshipType.CONTAINS:
                continue
            if is_title_modifier(child):
                continue
            report.error(
                Rule.TOP_LEVEL_RELATIONSHIP,
                f"Top-level content item relationship must be CONTAINS, got "
                f"{child.relationship_type!r}",
                child_path("", index),
            )

        self.check_title_modifiers(content, report)

    def check_title_modifiers(self, content: SRContentNode, report: ValidationReport) -> None:
        """Quality-issue and best-in-set designations need a Document Title Modifier.

        The designation may come from the document title or from an IMAGE item's
        concept name; a modifier must then be present among the root items or
        among the siblings of that IMAGE item. One finding per required code set.
        """
        required: dict[str, str] = {}
        title = content.concept_name
        if requires_title_modifier(title) and not _has_modifier(content):
            required.setdefault(TITLE_MODIFIER_REQUIREMENTS[title.value], "ConceptNameCodeSequence")

        def visit(parent: SRContentNode, path: str) -> None:
            for index, child in enumerate(parent.children):
                item_path = child_path(path, index)
                if (
                    child.value_type == ValueType.IMAGE
                    and requires_title_modifier(child.concept_name)
                    and not _has_modifier(parent)
                    and not _has_modifier(content)
                ):
                    required.setdefault(
                        TITLE_MODIFIER_REQUIREMENTS[child.concept_name.value], item_path
                    )
                visit(child, item_path)

        visit(content, "")
        for context_group, path in required.items():
            report.error(
                Rule.TITLE_MODIFIER,
                f"Document Title Modifier ({codes.DOCUMENT_TITLE_MODIFIER.value}, DCM) "
                f"with a code from {context_group} is required but missing",
                path,
                context_group=context_group,
            )

    # ------------------------------------------------------------------
    # MADO profile rules
    # ------------------------------------------------------------------

    def check_timezone_offset(self, dataset: Dataset, report: ValidationReport) -> None:
        """MADO manifests carry Timezone Offset From UTC as +HHMM or -HHMM."""
        offset = str(dataset.get("TimezoneOffsetFromUTC") or "").strip()
        if not offset:
            report.error(
                Rule.TIMEZONE_OFFSET,
                "Timezone Offset From UTC is missing or empty",
                "TimezoneOffsetFromUTC",
            )
            return
        match = _OFFSET_RE.match(offset)
        if match is None or int(match.group(1)) > 14 or int(match.group(2)) > 59:
            report.error(
                Rule.TIMEZONE_OFFSET,
                f"Timezone Offset From UTC {offset!r} is not of the form +HHMM or -HHMM",
                "TimezoneOffsetFromUTC",
                offset=offset,
            )

    def check_manifest_title(self, content: SRContentNode, report: ValidationReport) -> None:
        """A MADO manifest is titled Manifest or Manifest with Description."""
        title = content.concept_name
        if title is None or not title.value:
            return
        if not any(title.matches(allowed) for allowed in MANIFEST_TITLES):
            report.error(
                Rule.MANIFEST_TITLE,
                f"Document title ({title.value}, {title.scheme}) is not "
                f"({codes.MANIFEST.value}, DCM) or ({codes.MANIFEST_WITH_DESCRIPTION.value}, DCM)",
                "ConceptNameCodeSequence",
            )

    def check_image_library(self, content: SRContentNode, report: ValidationReport) -> None:
        """TID 1600 Image Library: group descriptors and entry references."""
        for path, node in walk(content):
            if node.value_type != ValueType.CONTAINER or not node.has_concept(codes.IMAGE_LIBRARY):
                continue
            groups = [
                (index, child)
                for index, child in enumerate(node.children)
                if child.has_concept(codes.IMAGE_LIBRARY_GROUP)
            ]
            direct_entries = [
                (index, child)
                for index, child in enumerate(node.children)
                if child.value_type in LIBRARY_ENTRY_TYPES
            ]
            if not groups and not direct_entries:
                report.error(
                    Rule.LIBRARY_GROUP, "Image Library has no groups and no entries", path
                )
            for index, group in groups:
                self._check_library_group(group, child_path(path, index), report)
            for index, item in direct_entries:
                self._check_library_entry(item, child_path(path, index), report)

    def _check_library_group(
        self, group: SRContentNode, path: str, report: ValidationReport
    ) -> None:
        for concept in LIBRARY_GROUP_ITEMS:
            if group.child(concept) is None:
                report.error(
                    Rule.LIBRARY_GROUP,
                    f"Image Library Group has no {concept.meaning} ({concept.value}, DCM)",
                    path,
                    concept=concept.value,
                )
        entries = [
            (index, child)
            for index, child in enumerate(group.children)
            if child.value_type in LIBRARY_ENTRY_TYPES
        ]
        if not entries:
            report.warning(
                Rule.LIBRARY_GROUP, "Image Library Group has no IMAGE or COMPOSITE entries", path
            )
        for index, item in entries:
            self._check_library_entry(item, child_path(path, index), report)

    def _check_library_entry(
        self, item: SRContentNode, path: str, report: ValidationReport
    ) -> None:
        if item.value_type == ValueType.COMPOSITE:
            report.warning(
                Rule.LIBRARY_ENTRY, "Image Library entry is COMPOSITE rather than IMAGE", path
            )
        if len(item.references) > 1:
            report.error(
                Rule.LIBRARY_ENTRY,
                f"Image Library entry must reference exactly one instance, "
                f"found {len(item.references)}",
                path,
                count=len(item.references),
            )
        for index, child in enumerate(item.children):
            if child.has_concept(codes.INSTANCE_NUMBER) and child.value_type != ValueType.TEXT:
                report.error(
                    Rule.INSTANCE_NUMBER_TYPE,
                    f"Instance Number must be a TEXT item, got {child.value_type!r}",
                    child_path(path, index),
                )

    # ------------------------------------------------------------------
    # Recursive content walk
    # ------------------------------------------------------------------

    def _walk(self, node: SRContentNode, path: str, state: _WalkState) -> None:
        report = state.report
        if node.relationship_type not in RELATIONSHIP_TYPES:
            report.error(
                Rule.RELATIONSHIP_TYPE,
                f"Invalid or missing Relationship Type {node.relationship_type!r}",
                path,
            )
        if node.value_type not in ALLOWED_VALUE_TYPES:
            report.error(
                Rule.VALUE_TYPE,
                f"Value Type {node.value_type!r} not allowed in a Key Object Selection",
                path,
            )
        else:
            self._check_value(node, path, state)

        if node.children and node.value_type not in (ValueType.CONTAINER, ValueType.IMAGE):
            report.warning(
                Rule.LEAF_CHILDREN,
                f"{node.value_type} item has nested content items",
                path,
            )
        if node.value_type == ValueType.CONTAINER and not node.children:
            report.warning(Rule.EMPTY_CONTAINER, "CONTAINER has no content items", path)

        for index, child in enumerate(node.children):
            self._walk(child, child_path(path, index), state)

    def _check_value(self, node: SRContentNode, path: str, state: _WalkState) -> None:
        """Companion attribute required by the item's value type."""
        report = state.report
        value_type = node.value_type
        if value_type == ValueType.TEXT and not node.text:
            report.error(Rule.MISSING_VALUE, "TEXT item has no Text Value", path)
        elif value_type == ValueType.UIDREF:
            if not node.text:
                report.error(Rule.MISSING_VALUE, "UIDREF item has no UID", path)
            elif not is_valid_uid(node.text):
                report.error(Rule.UID_FORMAT, f"Invalid UID {node.text!r} in UIDREF item", path)
        elif value_type == ValueType.PNAME and not node.text:
            report.error(Rule.MISSING_VALUE, "PNAME item has no Person Name", path)
        elif value_type == ValueType.CODE:
            if node.code_count != 1:
                report.error(
                    Rule.MISSING_VALUE,
                    f"CODE item must have exactly one Concept Code Sequence item, "
                    f"found {node.code_count}",
                    path,
                )
            elif not node.code.is_complete:
                report.error(
                    Rule.MISSING_VALUE,
                    "CODE item code is missing value, scheme or meaning",
                    path,
                )
        elif value_type == ValueType.NUM and node.numeric is None:
            report.error(Rule.MISSING_VALUE, "NUM item has no Measured Value Sequence", path)
        elif value_type in REFERENCE_VALUE_TYPES:
            self._check_references(node, path, state)

    def _check_references(self, node: SRContentNode, path: str, state: _WalkState) -> None:
        report = state.report
        if not node.references:
            report.error(
                Rule.MISSING_VALUE,
                f"{node.value_type} item has no Referenced SOP Sequence items",
                path,
            )
        if node.has_purpose_of_reference:
            report.error(
                Rule.PURPOSE_OF_REFERENCE,
                "Purpose of Reference Code Sequence is not allowed in TID 2010",
                path,
            )
        for ref in node.references:
            state.references += 1
            uid = ref.instance_uid
            if not is_valid_uid(ref.class_uid):
                report.error(
                    Rule.UID_FORMAT, f"Invalid Referenced SOP Class UID {ref.class_uid!r}", path
                )
            if not is_valid_uid(uid):
                report.error(
                    Rule.UID_FORMAT, f"Invalid Referenced SOP Instance UID {uid!r}", path
                )
                continue
            if state.self_uid and uid == state.self_uid:
                report.error(
                    Rule.SELF_REFERENCE,
                    "Manifest references its own SOP Instance UID",
                    path,
                    sop_instance_uid=uid,
                )
            if uid in state.seen:
                if not state.allow_duplicates:
                    report.error(
                        Rule.DUPLICATE_REFERENCE,
                        f"SOP Instance UID {uid} referenced more than once",
                        path,
                        sop_instance_uid=uid,
                        first_path=state.seen[uid],
                    )
            else:
                state.seen[uid] = path
            if uid not in state.evidence_uids:
                report.error(
                    Rule.ORPHAN_REFERENCE,
                    f"SOP Instance UID {uid} is referenced in content but absent from evidence",
                    path,
                    sop_instance_uid=uid,
                )

    # ------------------------------------------------------------------
    # Cross references
    # ------------------------------------------------------------------

    def check_cross_references(self, evidence: EvidenceHierarchy, state: _WalkState) -> None:
        report = state.report
        referenced = set(state.seen)
        if not referenced and not state.evidence_uids:
            report.info(
                Rule.NO_REFERENCES,
                "Neither content nor evidence references any instance",
            )
        unreferenced = [
            inst.instance_uid
            for inst in evidence.iter_instances()
            if inst.instance_uid and inst.instance_uid not in referenced
        ]
        if unreferenced and referenced:
            report.warning(
                Rule.UNREFERENCED_EVIDENCE,
                f"{len(unreferenced)} evidence instance(s) are not referenced in content",
                EVIDENCE_PATH,
                sop_instance_uids=unreferenced,
            )


def _has_modifier(parent: SRContentNode) -> bool:
    return any(is_title_modifier(child) for child in parent.children)


def validate_manifest(
    dataset: Dataset,
    allow_duplicates: bool | None = None,
    settings: Settings | None = None,
) -> ValidationReport:
    """Validate a KOS dataset with default settings."""
    return KOSValidator(settings, allow_duplicate_references=allow_duplicates).validate(dataset)
