"""Shared constants for MADO manifest conversion.

SOP class UIDs, FHIR system URIs, profile and extension URLs used by both
conversion directions and the validator.

References:
- IHE RAD MADO: https://profiles.ihe.net/RAD/MADO/
- DICOM PS3.16 TID 2010: https://dicom.nema.org/medical/dicom/current/output/chtml/part16/chapter_A.html

"""

from __future__ import annotations

import uuid
from typing import Final

# =============================================================================
# DICOM UIDs
# =============================================================================

#: Key Object Selection Document Storage
KOS_SOP_CLASS_UID: Final[str] = "1.2.840.10008.5.1.4.1.1.88.59"

#: Explicit VR Little Endian, used when writing manifests to disk
EXPLICIT_VR_LITTLE_ENDIAN: Final[str] = "1.2.840.10008.1.2.1"

#: Maximum length of a DICOM UID (PS3.5 9.1)
MAX_UID_LENGTH: Final[int] = 64

#: Maximum length of an Application Entity title (AE VR)
MAX_AE_TITLE_LENGTH: Final[int] = 16

SPECIFIC_CHARACTER_SET: Final[str] = "ISO_IR 192"

# =============================================================================
# FHIR Systems and Profiles
# =============================================================================

DICOM_UID_SYSTEM: Final[str] = "urn:dicom:uid"
OID_PREFIX: Final[str] = "urn:oid:"
UUID_PREFIX: Final[str] = "urn:uuid:"
RFC3986_SYSTEM: Final[str] = "urn:ietf:rfc:3986"

LOINC_SYSTEM: Final[str] = "http://loinc.org"
SNOMED_SYSTEM: Final[str] = "http://snomed.info/sct"
DCM_SYSTEM: Final[str] = "http://dicom.nema.org/resources/ontology/DCM"
SRT_SYSTEM: Final[str] = "http://snomed.info/srt"
V2_0203_SYSTEM: Final[str] = "http://terminology.hl7.org/CodeSystem/v2-0203"
ENDPOINT_CONNECTION_TYPE_SYSTEM: Final[str] = (
    "http://terminology.hl7.org/CodeSystem/endpoint-connection-type"
)
FHIR_TYPES_SYSTEM: Final[str] = "http://hl7.org/fhir/fhir-types"

MADO_BUNDLE_PROFILE: Final[str] = (
    "https://profiles.ihe.net/RAD/MADO/StructureDefinition/MadoDocumentBundle"
)
MADO_COMPOSITION_PROFILE: Final[str] = (
    "https://profiles.ihe.net/RAD/MADO/StructureDefinition/MadoComposition"
)

# =============================================================================
# Side-channel Extensions
# =============================================================================

EXTENSION_BASE: Final[str] = "http://mado-bridge.org/fhir/StructureDefinition/"

EXT_ORIGINAL_MANUFACTURER: Final[str] = EXTENSION_BASE + "original-manufacturer"
EXT_PATIENT_ID: Final[str] = EXTENSION_BASE + "patient-id"
EXT_PATIENT_ID_NAMESPACE: Final[str] = EXTENSION_BASE + "patient-id-local-namespace"
EXT_TYPE_OF_PATIENT_ID: Final[str] = EXTENSION_BASE + "type-of-patient-id"
EXT_STUDY_ID: Final[str] = EXTENSION_BASE + "study-id"
EXT_STUDY_TIME: Final[str] = EXTENSION_BASE + "study-time"
EXT_CONTENT_DATE: Final[str] = EXTENSION_BASE + "content-date"
EXT_CONTENT_TIME: Final[str] = EXTENSION_BASE + "content-time"
EXT_SERIES_DATE: Final[str] = EXTENSION_BASE + "series-date"
EXT_SERIES_TIME: Final[str] = EXTENSION_BASE + "series-time"
EXT_MANIFEST_SOP_INSTANCE_UID: Final[str] = (
    EXTENSION_BASE + "manifest-sop-instance-uid"
)
EXT_MANIFEST_SERIES_INSTANCE_UID: Final[str] = (
    EXTENSION_BASE + "manifest-series-instance-uid"
)
EXT_REFERRING_PHYSICIAN: Final[str] = EXTENSION_BASE + "referring-physician"
EXT_INSTANCE_DESCRIPTION: Final[str] = EXTENSION_BASE + "instance-description"
EXT_SELECTION_CODE: Final[str] = EXTENSION_BASE + "selection-code"
EXT_DERIVED_FROM: Final[str] = EXTENSION_BASE + "derived-from"
EXT_SELECTED_INSTANCE: Final[str] = EXTENSION_BASE + "selected-instance"
EXT_TITLE_MODIFIER: Final[str] = EXTENSION_BASE + "document-title-modifier"

#: valueCode markers for tri-state side-channel extensions
MARKER_EMPTY: Final[str] = "empty"
MARKER_UNSET: Final[str] = "unset"

# =============================================================================
# Endpoints
# =============================================================================

WADO_RS_CONNECTION_TYPE: Final[str] = "dicom-wado-rs"
STUDIES_PATH_SEGMENT: Final[str] = "/studies/"

#: MIME types advertised on every WADO-RS endpoint
WADO_RS_MIME_TYPES: Final[tuple[str, ...]] = (
    "application/dicom",
    "application/dicom+json",
    "application/dicom+xml",
    "application/octet-stream",
    "application/pdf",
    "application/zip",
    "image/jpeg",
    "image/jp2",
    "image/jpx",
    "image/jls",
    "image/png",
    "image/gif",
    "image/dicom-rle",
    "image/x-dicom-rle",
    "video/mpeg",
    "video/mp4",
    "text/xml",
)

# =============================================================================
# Identity
# =============================================================================

#: Namespace for name-based (v5) resource identities
IDENTITY_NAMESPACE: Final[uuid.UUID] = uuid.uuid5(
    uuid.NAMESPACE_URL, "http://mado-bridge.org/identity"
)

# =============================================================================
# Fallback Strings
# =============================================================================

ANONYMOUS_PATIENT_NAME: Final[str] = "ANONYMOUS"
MANIFEST_SERIES_DESCRIPTION: Final[str] = "MADO Manifest"
NO_SERIES_DESCRIPTION: Final[str] = "(no Series Description)"
KOS_DESCRIPTION_TEXT: Final[str] = "Manifest with Description"
COMPOSITION_TITLE_PREFIX: Final[str] = "MADO Imaging Manifest - "
FALLBACK_MODALITY: Final[str] = "OT"
