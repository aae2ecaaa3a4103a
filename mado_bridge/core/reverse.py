"""Reverse mapping: FHIR document bundle -> KOS manifest (DICOM).

Rebuilds a TID 2010 Key Object Selection document from a MADO bundle. The
bundle is read through the fhir.resources R5 models; each DICOM module is
produced by its own populator returning a fresh Dataset fragment, and the
fragments are merged into the final document. Fields that FHIR has no native
place for are recovered from the side-channel extensions the forward mapper
writes, so DICOM -> FHIR -> DICOM keeps the identifying data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fhir.resources.basic import Basic
from fhir.resources.bundle import Bundle
from fhir.resources.composition import Composition
from fhir.resources.device import Device
from fhir.resources.endpoint import Endpoint
from fhir.resources.extension import Extension
from fhir.resources.humanname import HumanName
from fhir.resources.imagingstudy import (
    ImagingStudy,
    ImagingStudySeries,
    ImagingStudySeriesInstance,
)
from fhir.resources.patient import Patient
from fhir.resources.practitioner import Practitioner
from fhir.resources.reference import Reference
from fhir.resources.resource import Resource
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence
from pydicom.uid import generate_uid

from mado_bridge.core import codes
from mado_bridge.core.codes import (
    DEFAULT_TITLE_MODIFIERS,
    TITLE_MODIFIER_REQUIREMENTS,
    CodedConcept,
    body_site_to_dicom,
    requires_title_modifier,
)
from mado_bridge.core.config import Settings, get_settings
from mado_bridge.core.constants import (
    EXT_CONTENT_DATE,
    EXT_CONTENT_TIME,
    EXT_INSTANCE_DESCRIPTION,
    EXT_MANIFEST_SERIES_INSTANCE_UID,
    EXT_MANIFEST_SOP_INSTANCE_UID,
    EXT_ORIGINAL_MANUFACTURER,
    EXT_PATIENT_ID,
    EXT_PATIENT_ID_NAMESPACE,
    EXT_REFERRING_PHYSICIAN,
    EXT_SELECTED_INSTANCE,
    EXT_SELECTION_CODE,
    EXT_SERIES_DATE,
    EXT_SERIES_TIME,
    EXT_STUDY_ID,
    EXT_STUDY_TIME,
    EXT_TITLE_MODIFIER,
    EXT_TYPE_OF_PATIENT_ID,
    FALLBACK_MODALITY,
    FHIR_TYPES_SYSTEM,
    KOS_DESCRIPTION_TEXT,
    KOS_SOP_CLASS_UID,
    MANIFEST_SERIES_DESCRIPTION,
    MARKER_EMPTY,
    NO_SERIES_DESCRIPTION,
    OID_PREFIX,
    SPECIFIC_CHARACTER_SET,
    UUID_PREFIX,
)
from mado_bridge.core.content_tree import SOPReference, SRContentNode, code_dataset
from mado_bridge.core.dates import from_fhir_datetime
from mado_bridge.core.evidence import (
    EvidenceHierarchy,
    EvidenceInstance,
    EvidenceSeries,
    EvidenceStudy,
)
from mado_bridge.core.exceptions import InvalidBundleError
from mado_bridge.core.fhir_io import validate_bundle_schema
from mado_bridge.core.metadata import FieldValue
from mado_bridge.core.types import RelationshipType
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)

_SEXES = {"male": "M", "female": "F", "other": "O"}
_IHE_PREFIX = "ihe:"


# =============================================================================
# Bundle access
# =============================================================================


@dataclass
class BundleResources:
    """Resources of a MADO bundle, located by type and local reference."""

    composition: Composition
    patient: Patient
    imaging_study: ImagingStudy
    device: Device | None = None
    practitioner: Practitioner | None = None
    endpoints: list[Endpoint] = field(default_factory=list)
    selections: list[Basic] = field(default_factory=list)
    by_reference: dict[str, Resource] = field(default_factory=dict)

    def resolve(self, reference: Reference | None) -> Resource | None:
        """Resource a local reference points at, if it is in the bundle."""
        if reference is None or not reference.reference:
            return None
        return self.by_reference.get(reference.reference)


def as_bundle(bundle: Bundle | dict[str, Any]) -> Bundle:
    """Accept a Bundle model or bundle JSON data.

    Raises:
        InvalidBundleError: If JSON data is not a FHIR Bundle
        SchemaValidationError: If JSON data fails the FHIR models

    """
    if isinstance(bundle, Bundle):
        return bundle
    if not isinstance(bundle, dict) or bundle.get("resourceType") != "Bundle":
        raise InvalidBundleError("Input is not a FHIR Bundle", error_code="NOT_A_BUNDLE")
    return validate_bundle_schema(bundle)


def check_bundle(bundle: Bundle) -> list[Resource]:
    """Check the fatal preconditions of a reverse conversion.

    Args:
        bundle: FHIR Bundle

    Returns:
        The bundle's resources in entry order

    Raises:
        InvalidBundleError: If the bundle is not a document bundle, has no
            entries, does not start with a Composition, or lacks a Patient or
            ImagingStudy

    """
    if bundle.type != "document":
        raise InvalidBundleError(
            f"Bundle type must be 'document', got {bundle.type!r}",
            error_code="NOT_A_DOCUMENT_BUNDLE",
            context={"bundle_type": bundle.type},
        )
    resources = [e.resource for e in bundle.entry or [] if e.resource is not None]
    if not resources:
        raise InvalidBundleError("Bundle has no entries", error_code="EMPTY_BUNDLE")
    first_type = resources[0].get_resource_type()
    if first_type != "Composition":
        raise InvalidBundleError(
            f"First bundle entry must be a Composition, got {first_type!r}",
            error_code="COMPOSITION_NOT_FIRST",
            context={"first_resource_type": first_type},
        )
    present = {resource.get_resource_type() for resource in resources}
    for required in ("Patient", "ImagingStudy"):
        if required not in present:
            raise InvalidBundleError(
                f"Bundle has no {required} resource",
                error_code=f"MISSING_{required.upper()}",
            )
    return resources


def collect_resources(bundle: Bundle) -> BundleResources:
    """Validate a bundle and sort its resources by role."""
    resources = check_bundle(bundle)
    by_type: dict[str, list[Resource]] = {}
    by_reference: dict[str, Resource] = {}
    for bundle_entry in bundle.entry:
        resource = bundle_entry.resource
        if resource is None:
            continue
        resource_type = resource.get_resource_type()
        by_type.setdefault(resource_type, []).append(resource)
        if bundle_entry.fullUrl:
            by_reference[bundle_entry.fullUrl] = resource
        if resource.id:
            by_reference.setdefault(UUID_PREFIX + resource.id, resource)
            by_reference.setdefault(f"{resource_type}/{resource.id}", resource)

    selections = [
        basic
        for basic in by_type.get("Basic", [])
        if any(
            coding.system == FHIR_TYPES_SYSTEM and coding.code == "ImagingSelection"
            for coding in basic.code.coding or []
        )
    ]
    return BundleResources(
        composition=resources[0],
        patient=by_type["Patient"][0],
        imaging_study=by_type["ImagingStudy"][0],
        device=(by_type.get("Device") or [None])[0],
        practitioner=(by_type.get("Practitioner") or [None])[0],
        endpoints=by_type.get("Endpoint", []),
        selections=selections,
        by_reference=by_reference,
    )


def find_extension(element: Any, url: str) -> Extension | None:
    for extension in getattr(element, "extension", None) or []:
        if extension.url == url:
            return extension
    return None


def extension_string(element: Any, url: str) -> str | None:
    extension = find_extension(element, url)
    return extension.valueString if extension else None


def extension_concept(element: Any, url: str) -> CodedConcept | None:
    """First coding of a valueCodeableConcept extension."""
    extension = find_extension(element, url)
    if extension is None or extension.valueCodeableConcept is None:
        return None
    codings = extension.valueCodeableConcept.coding or []
    return CodedConcept.from_coding(codings[0]) if codings else None


def extension_state(element: Any, url: str) -> FieldValue | None:
    """Decode a tri-state side-channel extension; None when it is missing."""
    extension = find_extension(element, url)
    if extension is None:
        return None
    if extension.valueString is not None:
        return FieldValue.of(extension.valueString)
    if extension.valueCode == MARKER_EMPTY:
        return FieldValue.empty()
    return FieldValue.unset()


def strip_uid(value: str | None) -> str | None:
    """Remove ``ihe:`` and ``urn:oid:`` prefixes from an identifier value."""
    if not value:
        return None
    if value.startswith(_IHE_PREFIX):
        value = value[len(_IHE_PREFIX) :]
    if value.startswith(OID_PREFIX):
        value = value[len(OID_PREFIX) :]
    return value or None


def _oid_of_system(system: str | None) -> str | None:
    if system and system.startswith(OID_PREFIX):
        return system[len(OID_PREFIX) :]
    return None


def dicom_person_name(name: HumanName | None) -> str:
    """Rebuild a DICOM PN from a HumanName (family^given^middle^prefix^suffix)."""
    if name is None or name.use == "anonymous":
        return ""
    given = name.given or []
    parts = [
        name.family or "",
        given[0] if given else "",
        " ".join(given[1:]),
        " ".join(name.prefix or []),
        " ".join(name.suffix or []),
    ]
    person_name = "^".join(parts).rstrip("^")
    if not person_name and name.text:
        return name.text
    return person_name


def _first(items: list | None) -> Any:
    return items[0] if items else None


def _issuer_sequence(oid: str) -> Sequence:
    issuer = Dataset()
    issuer.UniversalEntityID = oid
    issuer.UniversalEntityIDType = "ISO"
    return Sequence([issuer])


def _code_item_dataset(concept: CodedConcept) -> Sequence:
    return Sequence([code_dataset(concept)])


# =============================================================================
# Module populators
# =============================================================================


def sop_common_module(bundle: Bundle, resources: BundleResources) -> Dataset:
    """SOP Common: KOS class and the manifest's SOP Instance UID."""
    ds = Dataset()
    ds.SpecificCharacterSet = SPECIFIC_CHARACTER_SET
    ds.SOPClassUID = KOS_SOP_CLASS_UID
    composition_id = _first(resources.composition.identifier)
    sop_uid = (
        strip_uid(bundle.identifier.value if bundle.identifier else None)
        or strip_uid(composition_id.value if composition_id else None)
        or extension_string(resources.imaging_study, EXT_MANIFEST_SOP_INSTANCE_UID)
    )
    if not sop_uid:
        sop_uid = generate_uid()
        logger.info("sop_instance_uid_generated", sop_instance_uid=sop_uid)
    ds.SOPInstanceUID = sop_uid
    return ds


def patient_module(patient: Patient, settings: Settings) -> Dataset:
    """Patient module, with issuer namespace and type from the identifier.

    Patient ID keeps its original presence: absent stays absent, empty stays
    empty. Identifiers without the side channel fall back to their value.
    """
    ds = Dataset()
    identifier = _first(patient.identifier)
    ds.PatientName = dicom_person_name(_first(patient.name))

    patient_id = extension_state(identifier, EXT_PATIENT_ID)
    if patient_id is None:
        patient_id = FieldValue.of((identifier.value if identifier else None) or "")
    if patient_id.value is not None:
        ds.PatientID = patient_id.value

    system_oid = _oid_of_system(identifier.system if identifier else None)
    issuer = extension_state(identifier, EXT_PATIENT_ID_NAMESPACE)
    if issuer is None:
        issuer = FieldValue.of(system_oid or settings.defaults.patient_id_issuer_oid)
    if issuer.value is not None:
        ds.IssuerOfPatientID = issuer.value
    if system_oid:
        ds.IssuerOfPatientIDQualifiersSequence = _issuer_sequence(system_oid)
    type_of_id = extension_string(identifier, EXT_TYPE_OF_PATIENT_ID)
    if type_of_id:
        ds.TypeOfPatientID = type_of_id

    birth_date, _, _ = from_fhir_datetime(patient.birthDate)
    ds.PatientBirthDate = birth_date or ""
    ds.PatientSex = _SEXES.get(patient.gender or "", "")
    return ds


def study_uid_of(study: ImagingStudy) -> str:
    for identifier in study.identifier or []:
        uid = strip_uid(identifier.value)
        if uid:
            return uid
    return ""


def accession_requests(study: ImagingStudy) -> list[tuple[str, str | None]]:
    """(accession number, issuer OID) for every identifier-based basedOn."""
    requests = []
    for based_on in study.basedOn or []:
        identifier = based_on.identifier
        if identifier is None or not identifier.value:
            continue
        requests.append((identifier.value, _oid_of_system(identifier.system)))
    return requests


def study_module(resources: BundleResources, settings: Settings) -> Dataset:
    """General Study module including accession and referring physician."""
    study = resources.imaging_study
    ds = Dataset()
    ds.StudyInstanceUID = study_uid_of(study)
    date, time, _ = from_fhir_datetime(study.started)
    ds.StudyDate = date or ""
    ds.StudyTime = extension_string(study, EXT_STUDY_TIME) or time or ""
    if study.description:
        ds.StudyDescription = study.description
    ds.StudyID = extension_string(study, EXT_STUDY_ID) or ""

    requests = accession_requests(study)
    if requests:
        accession, issuer = requests[0]
        ds.AccessionNumber = accession
        ds.IssuerOfAccessionNumberSequence = _issuer_sequence(
            issuer or settings.defaults.accession_issuer_oid
        )
    else:
        ds.AccessionNumber = ""

    physician = extension_state(study, EXT_REFERRING_PHYSICIAN)
    if physician is None:
        practitioner = resources.resolve(study.referrer) or resources.practitioner
        name = _first(practitioner.name) if practitioner is not None else None
        physician = FieldValue.of(dicom_person_name(name))
    if physician.value is not None:
        ds.ReferringPhysicianName = physician.value
    return ds


def series_module(study: ImagingStudy) -> Dataset:
    """Key Object Document Series module for the manifest itself."""
    ds = Dataset()
    ds.Modality = "KO"
    series_uid = extension_string(study, EXT_MANIFEST_SERIES_INSTANCE_UID)
    ds.SeriesInstanceUID = series_uid or generate_uid()
    ds.SeriesNumber = 1
    series_date = extension_string(study, EXT_SERIES_DATE)
    series_time = extension_string(study, EXT_SERIES_TIME)
    if series_date:
        ds.SeriesDate = series_date
    if series_time:
        ds.SeriesTime = series_time
    ds.SeriesDescription = MANIFEST_SERIES_DESCRIPTION
    ds.ReferencedPerformedProcedureStepSequence = Sequence()
    return ds


def equipment_module(device: Device | None, settings: Settings) -> Dataset:
    """General Equipment module; Manufacturer keeps its original presence."""
    defaults = settings.defaults
    ds = Dataset()
    manufacturer = extension_state(device, EXT_ORIGINAL_MANUFACTURER)
    if manufacturer is None:
        manufacturer = FieldValue.of(
            (device.manufacturer if device else None) or defaults.device_manufacturer
        )
    if manufacturer.value is not None:
        ds.Manufacturer = manufacturer.value
    name = _first(device.name) if device else None
    ds.ManufacturerModelName = (name.value if name else None) or defaults.device_model
    version = _first(device.version) if device else None
    ds.SoftwareVersions = (version.value if version else None) or defaults.software_version
    owner = device.owner if device else None
    ds.InstitutionName = (owner.display if owner else None) or defaults.institution_name
    return ds


def sr_document_module(resources: BundleResources) -> Dataset:
    """SR Document General module and the root content item header."""
    study = resources.imaging_study
    ds = Dataset()
    ds.InstanceNumber = 1
    date, time, offset = from_fhir_datetime(resources.composition.date)
    ds.ContentDate = extension_string(study, EXT_CONTENT_DATE) or date or ""
    ds.ContentTime = extension_string(study, EXT_CONTENT_TIME) or time or ""
    if offset:
        ds.TimezoneOffsetFromUTC = offset

    ds.ValueType = "CONTAINER"
    ds.ContinuityOfContent = "SEPARATE"
    ds.PreliminaryFlag = "FINAL"
    ds.ConceptNameCodeSequence = _code_item_dataset(codes.MANIFEST_WITH_DESCRIPTION)
    template = Dataset()
    template.MappingResource = "DCMR"
    template.TemplateIdentifier = "2010"
    ds.ContentTemplateSequence = Sequence([template])
    return ds


# =============================================================================
# Evidence and requests
# =============================================================================


def endpoint_address(resources: BundleResources, references: list[Reference] | None) -> str | None:
    for reference in references or []:
        endpoint = resources.resolve(reference)
        if endpoint is not None and getattr(endpoint, "address", None):
            return str(endpoint.address).rstrip("/")
    return None


def _sop_class_uid(instance: ImagingStudySeriesInstance) -> str:
    return strip_uid(instance.sopClass.code if instance.sopClass else None) or ""


def build_evidence(resources: BundleResources, settings: Settings) -> EvidenceHierarchy:
    """Evidence hierarchy rebuilt from the ImagingStudy series and instances."""
    study = resources.imaging_study
    study_uid = study_uid_of(study)
    study_base = endpoint_address(resources, study.endpoint)
    series_list = []
    for series in study.series or []:
        series_uid = series.uid or ""
        base = endpoint_address(resources, series.endpoint) or study_base
        instances = tuple(
            EvidenceInstance(
                class_uid=_sop_class_uid(instance),
                instance_uid=instance.uid or "",
                instance_number=instance.number,
            ).with_description(extension_string(instance, EXT_INSTANCE_DESCRIPTION))
            for instance in series.instance or []
        )
        series_list.append(
            EvidenceSeries(
                series_uid=series_uid,
                modality=_series_modality(series),
                retrieve_url=(
                    f"{base}/studies/{study_uid}/series/{series_uid}" if base else None
                ),
                retrieve_location_uid=settings.defaults.retrieve_location_uid,
                instances=instances,
            )
        )
    return EvidenceHierarchy(
        studies=(EvidenceStudy(study_uid=study_uid, series=tuple(series_list)),)
    )


def referenced_request_sequence(study: ImagingStudy, settings: Settings) -> Sequence:
    """One Referenced Request item per basedOn accession number."""
    defaults = settings.defaults
    study_uid = study_uid_of(study)
    items = []
    for accession, issuer in accession_requests(study):
        item = Dataset()
        item.AccessionNumber = accession
        item.IssuerOfAccessionNumberSequence = _issuer_sequence(
            issuer or defaults.accession_issuer_oid
        )
        item.StudyInstanceUID = study_uid
        item.RequestedProcedureID = defaults.requested_procedure_id
        item.PlacerOrderNumberImagingServiceRequest = defaults.placer_order_number
        item.FillerOrderNumberImagingServiceRequest = defaults.filler_order_number
        items.append(item)
    return Sequence(items)


# =============================================================================
# Content tree
# =============================================================================


def _series_modality(series: ImagingStudySeries) -> str:
    coding = _first(series.modality.coding) if series.modality else None
    return (coding.code if coding else None) or FALLBACK_MODALITY


def target_region(study: ImagingStudy) -> CodedConcept:
    """Target region from the first series body site, mapped back to SRT."""
    for series in study.series or []:
        body_site = series.bodySite
        concept = body_site.concept if body_site else None
        coding = _first(concept.coding) if concept else None
        if coding is not None and coding.code:
            site = CodedConcept.from_coding(coding)
            if not site.meaning:
                site = CodedConcept(site.value, site.scheme, site.value)
            return body_site_to_dicom(site)
    return codes.DEFAULT_TARGET_REGION


def _acq(node: SRContentNode) -> SRContentNode:
    """Same item with a HAS ACQ CONTEXT relationship."""
    return SRContentNode(
        node.value_type,
        RelationshipType.HAS_ACQ_CONTEXT.value,
        node.concept_name,
        node.value,
        node.children,
    )


def study_context_items(modality: str, study_uid: str, region: CodedConcept) -> list[SRContentNode]:
    return [
        SRContentNode.code_item(codes.MODALITY, CodedConcept(modality, codes.SCHEME_DCM, modality)),
        SRContentNode.uidref_item(codes.STUDY_INSTANCE_UID, study_uid),
        SRContentNode.code_item(codes.TARGET_REGION, region),
    ]


def instance_entry(instance: ImagingStudySeriesInstance, position: int) -> SRContentNode:
    """IMAGE entry of a library group with its instance number and frames."""
    number = instance.number or position
    children = [
        SRContentNode.text_item(
            codes.INSTANCE_NUMBER, str(number), RelationshipType.HAS_ACQ_CONTEXT
        )
    ]
    frames = EvidenceInstance("", "").with_description(
        extension_string(instance, EXT_INSTANCE_DESCRIPTION)
    ).number_of_frames
    if frames and frames > 1:
        children.append(SRContentNode.num_item(codes.NUMBER_OF_FRAMES, frames))
    sop = SOPReference(_sop_class_uid(instance), instance.uid or "")
    return SRContentNode.image_item([sop], children=children)


def series_group(
    series: ImagingStudySeries,
    position: int,
    study_date: str | None = None,
    study_time: str | None = None,
) -> SRContentNode:
    """Image Library Group for one ImagingStudy series.

    Series date and time come from the side channel, then from the series
    start, then from the study.
    """
    acq = RelationshipType.HAS_ACQ_CONTEXT
    modality = _series_modality(series)
    instances = series.instance or []
    items = [
        SRContentNode.code_item(
            codes.MODALITY, CodedConcept(modality, codes.SCHEME_DCM, modality), acq
        ),
        SRContentNode.uidref_item(codes.SERIES_INSTANCE_UID, series.uid or "", acq),
        SRContentNode.text_item(
            codes.SERIES_DESCRIPTION, series.description or NO_SERIES_DESCRIPTION, acq
        ),
    ]
    series_date, series_time, _ = from_fhir_datetime(series.started)
    series_date = extension_string(series, EXT_SERIES_DATE) or series_date or study_date
    series_time = extension_string(series, EXT_SERIES_TIME) or series_time or study_time
    if series_date:
        items.append(SRContentNode.text_item(codes.SERIES_DATE, series_date, acq))
    if series_time:
        items.append(SRContentNode.text_item(codes.SERIES_TIME, series_time, acq))
    number = series.number if series.number is not None else position
    items.append(SRContentNode.text_item(codes.SERIES_NUMBER, str(number), acq))
    items.append(SRContentNode.num_item(codes.NUMBER_OF_SERIES_RELATED_INSTANCES, len(instances)))
    items.extend(
        instance_entry(instance, index) for index, instance in enumerate(instances, start=1)
    )
    return SRContentNode.container(codes.IMAGE_LIBRARY_GROUP, items)


def selected_instances(selection: Basic) -> list[SOPReference]:
    references = []
    for extension in selection.extension or []:
        if extension.url != EXT_SELECTED_INSTANCE:
            continue
        uid = extension_string(extension, "uid")
        sop_class = find_extension(extension, "sopClass")
        coding = sop_class.valueCoding if sop_class else None
        if uid:
            references.append(SOPReference(strip_uid(coding.code if coding else None) or "", uid))
    return references


def selection_items(selections: list[Basic]) -> tuple[list[SRContentNode], list[SRContentNode]]:
    """Root-level items recreating the key-image selections.

    Designations that need a Document Title Modifier get one as a HAS CONCEPT
    MOD item: the recorded modifier when the selection carries it, else the
    default of the designation's context group.

    Returns:
        Title modifier items and IMAGE items, each de-duplicated and in order

    """
    images = []
    modifiers: list[CodedConcept] = []
    for selection in selections:
        code = extension_concept(selection, EXT_SELECTION_CODE)
        references = selected_instances(selection)
        if code is None or not references:
            continue
        images.append(SRContentNode.image_item(references, concept=code))
        if requires_title_modifier(code):
            modifier = extension_concept(selection, EXT_TITLE_MODIFIER) or (
                DEFAULT_TITLE_MODIFIERS[TITLE_MODIFIER_REQUIREMENTS[code.value]]
            )
            if modifier not in modifiers:
                modifiers.append(modifier)
    modifier_items = [
        SRContentNode.code_item(
            codes.DOCUMENT_TITLE_MODIFIER, modifier, RelationshipType.HAS_CONCEPT_MOD
        )
        for modifier in modifiers
    ]
    return modifier_items, images


def build_content(resources: BundleResources) -> SRContentNode:
    """TID 2010 content tree: modifiers, description, context, library, key images."""
    study = resources.imaging_study
    study_uid = study_uid_of(study)
    study_date, study_time, _ = from_fhir_datetime(study.started)
    study_time = extension_string(study, EXT_STUDY_TIME) or study_time
    series_list = study.series or []
    modality = _series_modality(series_list[0]) if series_list else FALLBACK_MODALITY
    region = target_region(study)

    library = SRContentNode.container(
        codes.IMAGE_LIBRARY,
        [_acq(item) for item in study_context_items(modality, study_uid, region)]
        + [
            series_group(series, index, study_date, study_time)
            for index, series in enumerate(series_list, start=1)
        ],
    )
    modifiers, images = selection_items(resources.selections)
    children = [
        *modifiers,
        SRContentNode.text_item(codes.KEY_OBJECT_DESCRIPTION, KOS_DESCRIPTION_TEXT),
        *study_context_items(modality, study_uid, region),
        library,
        *images,
    ]
    return SRContentNode.container(codes.MANIFEST_WITH_DESCRIPTION, children, relationship=None)


# =============================================================================
# Mapper
# =============================================================================


class ReverseMapper:
    """Converts MADO document bundles back into KOS manifests."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def to_dataset(self, bundle: Bundle | dict[str, Any]) -> Dataset:
        """Convert a MADO document bundle into a KOS dataset.

        Args:
            bundle: FHIR document Bundle, as a model or as JSON data

        Returns:
            New KOS dataset (without file meta information)

        Raises:
            InvalidBundleError: If the bundle fails the document preconditions
            SchemaValidationError: If bundle JSON data fails the FHIR models

        """
        bundle = as_bundle(bundle)
        resources = collect_resources(bundle)
        study = resources.imaging_study

        dataset = Dataset()
        for fragment in (
            sop_common_module(bundle, resources),
            patient_module(resources.patient, self.settings),
            study_module(resources, self.settings),
            series_module(study),
            equipment_module(resources.device, self.settings),
            sr_document_module(resources),
        ):
            dataset.update(fragment)

        requests = referenced_request_sequence(study, self.settings)
        if len(requests):
            dataset.ReferencedRequestSequence = requests
        evidence = build_evidence(resources, self.settings)
        dataset.CurrentRequestedProcedureEvidenceSequence = evidence.to_sequence()

        content = build_content(resources)
        dataset.ContentSequence = Sequence([child.to_dataset() for child in content.children])

        _, series_count, instance_count = evidence.counts
        logger.info(
            "dataset_built",
            sop_instance_uid=dataset.SOPInstanceUID,
            series=series_count,
            instances=instance_count,
            requests=len(requests),
            selections=len(resources.selections),
        )
        return dataset


def to_dataset(bundle: Bundle | dict[str, Any], settings: Settings | None = None) -> Dataset:
    """Convert a MADO document bundle into a KOS dataset."""
    return ReverseMapper(settings).to_dataset(bundle)
