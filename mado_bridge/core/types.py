"""MADO Bridge Type Definitions.

Shared enums used by the content tree model, the mappers and the validator.
Kept in one module to avoid circular imports between them.
"""

from __future__ import annotations

from enum import Enum

# =============================================================================
# SR Content Item Enums
# =============================================================================


class ValueType(str, Enum):
    """Value Type (0040,A040) of a Structured Report content item.

    TID 2010 allows CONTAINER, TEXT, CODE, UIDREF, PNAME and the three
    reference types. NUM is accepted for the TID 1600 image library
    metadata (frame counts, instance counts).
    """

    CONTAINER = "CONTAINER"
    TEXT = "TEXT"
    CODE = "CODE"
    UIDREF = "UIDREF"
    PNAME = "PNAME"
    IMAGE = "IMAGE"
    COMPOSITE = "COMPOSITE"
    WAVEFORM = "WAVEFORM"
    NUM = "NUM"

    @property
    def is_reference(self) -> bool:
        """True for value types that carry a Referenced SOP Sequence."""
        return self.value in REFERENCE_VALUE_TYPES


class RelationshipType(str, Enum):
    """Relationship Type (0040,A010) between a content item and its parent."""

    CONTAINS = "CONTAINS"
    HAS_CONCEPT_MOD = "HAS CONCEPT MOD"
    HAS_OBS_CONTEXT = "HAS OBS CONTEXT"
    HAS_ACQ_CONTEXT = "HAS ACQ CONTEXT"
    INFERRED_FROM = "INFERRED FROM"
    SELECTED_FROM = "SELECTED FROM"


REFERENCE_VALUE_TYPES = frozenset(
    {ValueType.IMAGE.value, ValueType.COMPOSITE.value, ValueType.WAVEFORM.value}
)


# =============================================================================
# Field State (absent / explicitly empty / present)
# =============================================================================


class FieldState(str, Enum):
    """Presence state of a DICOM attribute carried through a conversion.

    - UNSET: attribute not present in the source
    - EMPTY: attribute present with a zero-length value
    - PRESENT: attribute present with a value
    """

    UNSET = "unset"
    EMPTY = "empty"
    PRESENT = "present"


# =============================================================================
# Validation Severity
# =============================================================================


class ValidationSeverity(str, Enum):
    """Severity of a validation finding.

    - INFO: informational, no action required
    - WARNING: profile recommendation not met
    - ERROR: profile requirement violated, document is not valid
    """

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# Resource Identity Roles
# =============================================================================


class IdentityRole(str, Enum):
    """Role tag mixed into every deterministic resource identity."""

    COMPOSITION = "composition"
    PATIENT = "patient"
    STUDY = "study"
    DEVICE = "device"
    PRACTITIONER = "practitioner"
    ENDPOINT = "endpoint"
    IMAGING_SELECTION = "imagingselection"
