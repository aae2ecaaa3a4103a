"""Manifest metadata extraction.

Pulls the flat header attributes of a KOS document (patient, study, manifest
identity, equipment, referring physician, target region and referenced
requests) into an immutable ManifestMetadata record.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydicom.dataset import Dataset
from pydicom.multival import MultiValue

from mado_bridge.core.codes import TARGET_REGION, CodedConcept
from mado_bridge.core.constants import KOS_SOP_CLASS_UID
from mado_bridge.core.content_tree import SRContentNode, find_by_concept
from mado_bridge.core.exceptions import UnsupportedDocumentError
from mado_bridge.core.types import FieldState
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FieldValue:
    """An attribute value that remembers whether it was absent or empty.

    Example:
        >>> FieldValue.of(None).state
        <FieldState.UNSET: 'unset'>
        >>> FieldValue.of("  ").state
        <FieldState.EMPTY: 'empty'>
        >>> FieldValue.of("-^-").is_placeholder
        True

    """

    state: FieldState
    text: str = ""

    @classmethod
    def of(cls, value: object | None) -> FieldValue:
        if value is None:
            return cls(FieldState.UNSET)
        text = str(value).strip()
        if not text:
            return cls(FieldState.EMPTY)
        return cls(FieldState.PRESENT, text)

    @classmethod
    def unset(cls) -> FieldValue:
        return cls(FieldState.UNSET)

    @classmethod
    def empty(cls) -> FieldValue:
        return cls(FieldState.EMPTY)

    @property
    def value(self) -> str | None:
        """None when unset, "" when empty, the text otherwise."""
        if self.state is FieldState.UNSET:
            return None
        return self.text

    @property
    def is_present(self) -> bool:
        return self.state is FieldState.PRESENT

    @property
    def is_placeholder(self) -> bool:
        """Present, but only dashes and empty name components (e.g. ``-``, ``^^``)."""
        if not self.is_present:
            return False
        return all(set(part) <= {"-", " "} for part in self.text.split("^"))

    @property
    def is_meaningful(self) -> bool:
        return self.is_present and not self.is_placeholder

    def or_default(self, default: str) -> str:
        return self.text if self.is_present else default


@dataclass(frozen=True)
class ReferencedRequest:
    """One Referenced Request Sequence item (one order of a multi-order study)."""

    accession_number: str | None = None
    accession_issuer: str | None = None
    study_uid: str | None = None
    requested_procedure_id: str | None = None
    placer_order_number: str | None = None
    filler_order_number: str | None = None


@dataclass(frozen=True)
class ManifestMetadata:
    """Flat header data of a KOS manifest."""

    # Manifest identity
    sop_instance_uid: str
    series_uid: str | None = None
    series_date: str | None = None
    series_time: str | None = None
    content_date: str | None = None
    content_time: str | None = None
    timezone_offset: str | None = None
    title: CodedConcept | None = None

    # Patient
    patient_id: FieldValue = FieldValue(FieldState.UNSET)
    patient_id_issuer: FieldValue = FieldValue(FieldState.UNSET)
    patient_id_issuer_oid: str | None = None
    type_of_patient_id: str | None = None
    patient_name: str | None = None
    patient_birth_date: str | None = None
    patient_sex: str | None = None

    # Study
    study_uid: str = ""
    study_id: str | None = None
    study_date: str | None = None
    study_time: str | None = None
    study_description: str | None = None
    accession_number: str | None = None
    accession_issuer: str | None = None

    # Equipment
    manufacturer: FieldValue = FieldValue(FieldState.UNSET)
    model_name: str | None = None
    software_version: str | None = None
    institution_name: str | None = None

    referring_physician: FieldValue = FieldValue(FieldState.UNSET)
    target_region: CodedConcept | None = None
    referenced_requests: tuple[ReferencedRequest, ...] = ()

    @property
    def effective_patient_issuer(self) -> str | None:
        """Issuer OID for the patient identifier system."""
        return self.patient_id_issuer_oid or (
            self.patient_id_issuer.text if self.patient_id_issuer.is_present else None
        )


def extract_metadata(
    dataset: Dataset, content: SRContentNode | None = None
) -> ManifestMetadata:
    """Extract manifest metadata from a KOS dataset.

    Args:
        dataset: KOS document dataset
        content: Already-parsed content tree, parsed from ``dataset`` if omitted

    Returns:
        Immutable metadata record

    Raises:
        UnsupportedDocumentError: If the SOP Class is not Key Object Selection

    """
    sop_class = _text(dataset, "SOPClassUID")
    if sop_class != KOS_SOP_CLASS_UID:
        raise UnsupportedDocumentError(
            f"Unsupported document type: SOP Class UID {sop_class!r} is not "
            f"Key Object Selection ({KOS_SOP_CLASS_UID})",
            error_code="UNSUPPORTED_DOCUMENT_TYPE",
            context={"sop_class_uid": sop_class},
        )

    if content is None:
        content = SRContentNode.from_dataset(dataset)

    region_item = find_by_concept(content, TARGET_REGION)
    target_region = region_item.code if region_item is not None else None

    metadata = ManifestMetadata(
        sop_instance_uid=_text(dataset, "SOPInstanceUID") or "",
        series_uid=_text(dataset, "SeriesInstanceUID"),
        series_date=_text(dataset, "SeriesDate"),
        series_time=_text(dataset, "SeriesTime"),
        content_date=_text(dataset, "ContentDate"),
        content_time=_text(dataset, "ContentTime"),
        timezone_offset=_text(dataset, "TimezoneOffsetFromUTC"),
        title=content.concept_name,
        patient_id=FieldValue.of(_text(dataset, "PatientID")),
        patient_id_issuer=FieldValue.of(_text(dataset, "IssuerOfPatientID")),
        patient_id_issuer_oid=_issuer_oid(dataset, "IssuerOfPatientIDQualifiersSequence"),
        type_of_patient_id=_text(dataset, "TypeOfPatientID"),
        patient_name=_text(dataset, "PatientName"),
        patient_birth_date=_text(dataset, "PatientBirthDate"),
        patient_sex=_text(dataset, "PatientSex"),
        study_uid=_text(dataset, "StudyInstanceUID") or "",
        study_id=_text(dataset, "StudyID"),
        study_date=_text(dataset, "StudyDate"),
        study_time=_text(dataset, "StudyTime"),
        study_description=_text(dataset, "StudyDescription"),
        accession_number=_text(dataset, "AccessionNumber"),
        accession_issuer=_issuer_oid(dataset, "IssuerOfAccessionNumberSequence"),
        manufacturer=FieldValue.of(_text(dataset, "Manufacturer")),
        model_name=_text(dataset, "ManufacturerModelName"),
        software_version=_text(dataset, "SoftwareVersions"),
        institution_name=_text(dataset, "InstitutionName"),
        referring_physician=FieldValue.of(_text(dataset, "ReferringPhysicianName")),
        target_region=target_region,
        referenced_requests=_referenced_requests(dataset),
    )
    logger.debug(
        "metadata_extracted",
        sop_instance_uid=metadata.sop_instance_uid,
        study_uid=metadata.study_uid,
        requests=len(metadata.referenced_requests),
        has_target_region=target_region is not None,
    )
    return metadata


def _referenced_requests(dataset: Dataset) -> tuple[ReferencedRequest, ...]:
    requests = []
    for item in dataset.get("ReferencedRequestSequence", []):
        requests.append(
            ReferencedRequest(
                accession_number=_text(item, "AccessionNumber"),
                accession_issuer=_issuer_oid(item, "IssuerOfAccessionNumberSequence"),
                study_uid=_text(item, "StudyInstanceUID"),
                requested_procedure_id=_text(item, "RequestedProcedureID"),
                placer_order_number=_text(
                    item, "PlacerOrderNumberImagingServiceRequest"
                ),
                filler_order_number=_text(
                    item, "FillerOrderNumberImagingServiceRequest"
                ),
            )
        )
    return tuple(requests)


def _issuer_oid(item: Dataset, keyword: str) -> str | None:
    """Universal (else local) entity ID of the first issuer sequence item."""
    issuers = item.get(keyword)
    if not issuers:
        return None
    issuer = issuers[0]
    return _text(issuer, "UniversalEntityID") or _text(issuer, "LocalNamespaceEntityID")


def _text(item: Dataset, keyword: str) -> str | None:
    """Attribute value as a stripped string; multi-values joined with a backslash."""
    value = item.get(keyword)
    if value is None:
        return None
    if isinstance(value, (MultiValue, list, tuple)):
        return "\\".join(str(v).strip() for v in value)
    return str(value).strip()
