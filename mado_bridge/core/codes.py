"""Coded concepts and read-only lookup tables.

Concept name codes for the TID 2010 / TID 1600 content tree, the key-image
designation codes, the document title modifier code sets and the bidirectional
body-site table between the legacy SNOMED-DICOM (SRT) designators and SNOMED CT.

All tables are immutable and built once at import time.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from fhir.resources.coding import Coding

from mado_bridge.core.constants import (
    DCM_SYSTEM,
    LOINC_SYSTEM,
    SNOMED_SYSTEM,
    SRT_SYSTEM,
)


@dataclass(frozen=True)
class CodedConcept:
    """A DICOM code triple (Code Value, Coding Scheme Designator, Code Meaning)."""

    value: str
    scheme: str
    meaning: str = ""

    @property
    def key(self) -> tuple[str, str]:
        """(scheme, value) pair used for matching; meaning is display only."""
        return (self.scheme, self.value)

    def matches(self, other: CodedConcept | None) -> bool:
        """Compare on scheme and value, ignoring the meaning."""
        return other is not None and self.key == other.key

    @property
    def is_complete(self) -> bool:
        """True when value, scheme and meaning are all populated."""
        return bool(self.value and self.scheme and self.meaning)

    def to_coding(self) -> Coding:
        """Render as a FHIR Coding."""
        return Coding(
            system=scheme_to_system(self.scheme),
            code=self.value,
            display=self.meaning or None,
        )

    @classmethod
    def from_coding(cls, coding: Coding) -> CodedConcept:
        """Build from a FHIR Coding, mapping the system back to a designator."""
        return cls(
            value=coding.code or "",
            scheme=system_to_scheme(coding.system or ""),
            meaning=coding.display or "",
        )


# =============================================================================
# Coding Schemes
# =============================================================================

SCHEME_DCM: Final[str] = "DCM"
SCHEME_SRT: Final[str] = "SRT"
SCHEME_SCT: Final[str] = "SCT"
SCHEME_LN: Final[str] = "LN"

_UNKNOWN_SCHEME_PREFIX = "urn:dicom:scheme:"

SCHEME_SYSTEMS: Final[MappingProxyType[str, str]] = MappingProxyType(
    {
        SCHEME_DCM: DCM_SYSTEM,
        SCHEME_SCT: SNOMED_SYSTEM,
        SCHEME_SRT: SRT_SYSTEM,
        SCHEME_LN: LOINC_SYSTEM,
    }
)
_SYSTEM_SCHEMES: Final[MappingProxyType[str, str]] = MappingProxyType(
    {system: scheme for scheme, system in SCHEME_SYSTEMS.items()}
)


def scheme_to_system(scheme: str) -> str:
    """Map a Coding Scheme Designator to a FHIR system URI."""
    return SCHEME_SYSTEMS.get(scheme, _UNKNOWN_SCHEME_PREFIX + scheme)


def system_to_scheme(system: str) -> str:
    """Map a FHIR system URI back to a Coding Scheme Designator."""
    if system in _SYSTEM_SCHEMES:
        return _SYSTEM_SCHEMES[system]
    if system.startswith(_UNKNOWN_SCHEME_PREFIX):
        return system[len(_UNKNOWN_SCHEME_PREFIX) :]
    return system


# =============================================================================
# Document Titles
# =============================================================================

MANIFEST = CodedConcept("113030", SCHEME_DCM, "Manifest")
MANIFEST_WITH_DESCRIPTION = CodedConcept(
    "ddd001", SCHEME_DCM, "Manifest with Description"
)
OF_INTEREST = CodedConcept("113000", SCHEME_DCM, "Of Interest")
REJECTED_FOR_QUALITY = CodedConcept(
    "113001", SCHEME_DCM, "Rejected for Quality Reasons"
)
QUALITY_ISSUE = CodedConcept("113010", SCHEME_DCM, "Quality Issue")
BEST_IN_SET = CodedConcept("113013", SCHEME_DCM, "Best In Set")
DOCUMENT_TITLE_MODIFIER = CodedConcept(
    "113011", SCHEME_DCM, "Document Title Modifier"
)

# =============================================================================
# TID 2010 / TID 1600 Concept Names
# =============================================================================

KEY_OBJECT_DESCRIPTION = CodedConcept("113012", SCHEME_DCM, "Key Object Description")
MODALITY = CodedConcept("121139", SCHEME_DCM, "Modality")
STUDY_INSTANCE_UID = CodedConcept("ddd011", SCHEME_DCM, "Study Instance UID")
TARGET_REGION = CodedConcept("123014", SCHEME_DCM, "Target Region")
IMAGE_LIBRARY = CodedConcept("111028", SCHEME_DCM, "Image Library")
IMAGE_LIBRARY_GROUP = CodedConcept("126200", SCHEME_DCM, "Image Library Group")
SERIES_DESCRIPTION = CodedConcept("ddd002", SCHEME_DCM, "Series Description")
SERIES_DATE = CodedConcept("ddd003", SCHEME_DCM, "Series Date")
SERIES_TIME = CodedConcept("ddd004", SCHEME_DCM, "Series Time")
INSTANCE_NUMBER = CodedConcept("ddd005", SCHEME_DCM, "Instance Number")
SERIES_INSTANCE_UID = CodedConcept("ddd006", SCHEME_DCM, "Series Instance UID")
SERIES_NUMBER = CodedConcept("ddd010", SCHEME_DCM, "Series Number")
NUMBER_OF_SERIES_RELATED_INSTANCES = CodedConcept(
    "ddd013", SCHEME_DCM, "Number of Series Related Instances"
)
NUMBER_OF_FRAMES = CodedConcept("121140", SCHEME_DCM, "Number of Frames")
NO_UNITS = CodedConcept("1", "UCUM", "no units")

# =============================================================================
# FHIR-side Codes
# =============================================================================

DIAGNOSTIC_IMAGING_STUDY = CodedConcept(
    "18748-4", SCHEME_LN, "Diagnostic imaging study"
)
DIAGNOSTIC_IMAGING_EQUIPMENT = CodedConcept(
    "314789007", SCHEME_SCT, "Diagnostic imaging equipment"
)

# =============================================================================
# Key Image Designations
# =============================================================================

#: DCM concept name codes that mark an IMAGE item as a key-image selection
KEY_IMAGE_CODES: Final[frozenset[str]] = frozenset(
    {
        "113000",
        "113001",
        "113002",
        "113003",
        "113004",
        "113005",
        "113006",
        "113007",
        "113008",
        "113009",
        "113010",
        "113013",
        "113018",
        "113020",
        "113030",
        "113035",
        "113036",
        "113037",
        "113038",
    }
)


def is_key_image_code(concept: CodedConcept | None) -> bool:
    """Check whether a concept name designates a key image."""
    return (
        concept is not None
        and concept.scheme == SCHEME_DCM
        and concept.value in KEY_IMAGE_CODES
    )


# =============================================================================
# Document Title Modifier Requirements
# =============================================================================

#: Title code -> context group its Document Title Modifier must be drawn from
TITLE_MODIFIER_REQUIREMENTS: Final[MappingProxyType[str, str]] = MappingProxyType(
    {
        REJECTED_FOR_QUALITY.value: "CID 7011",
        QUALITY_ISSUE.value: "CID 7011",
        BEST_IN_SET.value: "CID 7012",
    }
)

#: Modifier used when a designation needs one but none was recorded
DEFAULT_TITLE_MODIFIERS: Final[MappingProxyType[str, CodedConcept]] = MappingProxyType(
    {
        "CID 7011": CodedConcept("111207", SCHEME_DCM, "Image artifact(s)"),
        "CID 7012": CodedConcept("113015", SCHEME_DCM, "Series"),
    }
)


def requires_title_modifier(concept: CodedConcept | None) -> bool:
    """Check whether a designation needs a Document Title Modifier."""
    return (
        concept is not None
        and concept.scheme == SCHEME_DCM
        and concept.value in TITLE_MODIFIER_REQUIREMENTS
    )


# =============================================================================
# Body Site (Target Region) Table
# =============================================================================

# (SRT code, SRT meaning, SNOMED CT code, SNOMED CT display)
_BODY_SITE_ROWS: Final[tuple[tuple[str, str, str, str], ...]] = (
    ("T-D4000", "Abdomen", "818981001", "Abdomen"),
    ("T-D1100", "Head", "69536005", "Head"),
    ("T-D1000", "Head and Neck", "774007", "Head and neck"),
    ("T-D3000", "Chest", "43799004", "Thorax"),
    ("T-D0010", "Entire body", "38266002", "Entire body"),
    ("T-D9000", "Lower limb", "61685007", "Lower limb"),
    ("T-D9400", "Lower leg", "30021000", "Lower leg"),
    ("T-D8000", "Upper limb", "53120007", "Upper limb"),
    ("T-04000", "Breast", "76752008", "Breast"),
    ("T-D6000", "Pelvis", "12921003", "Pelvis"),
)

SRT_TO_SNOMED: Final[MappingProxyType[str, CodedConcept]] = MappingProxyType(
    {srt: CodedConcept(sct, SCHEME_SCT, display) for srt, _, sct, display in _BODY_SITE_ROWS}
)
SNOMED_TO_SRT: Final[MappingProxyType[str, CodedConcept]] = MappingProxyType(
    {sct: CodedConcept(srt, SCHEME_SRT, meaning) for srt, meaning, sct, _ in _BODY_SITE_ROWS}
)

DEFAULT_TARGET_REGION = CodedConcept("T-D4000", SCHEME_SRT, "Abdomen")


def body_site_to_fhir(region: CodedConcept) -> CodedConcept:
    """Translate a target region to the SNOMED CT body site used in FHIR.

    Regions without a table entry pass through with their own scheme.
    """
    if region.scheme == SCHEME_SRT and region.value in SRT_TO_SNOMED:
        return SRT_TO_SNOMED[region.value]
    return region


def body_site_to_dicom(site: CodedConcept) -> CodedConcept:
    """Translate a SNOMED CT body site back to the legacy SRT target region.

    Codes without a table entry pass through with their scheme and display text.
    """
    if site.scheme == SCHEME_SCT and site.value in SNOMED_TO_SRT:
        return SNOMED_TO_SRT[site.value]
    return site
