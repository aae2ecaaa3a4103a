"""Forward mapping: KOS manifest (DICOM) -> FHIR document bundle.

The bundle is built from the FHIR R5 models of fhir.resources. Each resource
is produced by a small builder function that takes the extracted metadata and
precomputed ids and returns a finished, validated resource, so builders can be
exercised in isolation.

Entry order is fixed by the MADO profile:
Composition, Patient, Device, Practitioner (optional), Endpoints,
ImagingStudy, key-image selections.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from fhir.resources.basic import Basic
from fhir.resources.bundle import Bundle, BundleEntry
from fhir.resources.codeableconcept import CodeableConcept
from fhir.resources.codeablereference import CodeableReference
from fhir.resources.coding import Coding
from fhir.resources.composition import Composition, CompositionSection
from fhir.resources.device import Device, DeviceName, DeviceVersion
from fhir.resources.endpoint import Endpoint, EndpointPayload
from fhir.resources.extension import Extension
from fhir.resources.humanname import HumanName
from fhir.resources.identifier import Identifier
from fhir.resources.imagingstudy import (
    ImagingStudy,
    ImagingStudySeries,
    ImagingStudySeriesInstance,
)
from fhir.resources.meta import Meta
from fhir.resources.patient import Patient
from fhir.resources.practitioner import Practitioner
from fhir.resources.reference import Reference
from fhir.resources.resource import Resource
from pydantic import ValidationError
from pydicom.dataset import Dataset

from mado_bridge.core import codes
from mado_bridge.core.codes import (
    CodedConcept,
    body_site_to_fhir,
    is_key_image_code,
    requires_title_modifier,
)
from mado_bridge.core.config import Settings, get_settings
from mado_bridge.core.constants import (
    ANONYMOUS_PATIENT_NAME,
    COMPOSITION_TITLE_PREFIX,
    DCM_SYSTEM,
    DICOM_UID_SYSTEM,
    ENDPOINT_CONNECTION_TYPE_SYSTEM,
    EXT_CONTENT_DATE,
    EXT_CONTENT_TIME,
    EXT_DERIVED_FROM,
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
    MADO_BUNDLE_PROFILE,
    MADO_COMPOSITION_PROFILE,
    MARKER_EMPTY,
    MARKER_UNSET,
    OID_PREFIX,
    RFC3986_SYSTEM,
    UUID_PREFIX,
    V2_0203_SYSTEM,
    WADO_RS_CONNECTION_TYPE,
    WADO_RS_MIME_TYPES,
)
from mado_bridge.core.content_tree import (
    SRContentNode,
    find_by_concept,
    title_modifier,
    walk,
)
from mado_bridge.core.dates import dicom_date_to_fhir, to_fhir_datetime
from mado_bridge.core.evidence import EvidenceHierarchy, EvidenceInstance, EvidenceSeries
from mado_bridge.core.fhir_io import schema_error
from mado_bridge.core.identity import IdentityGenerator
from mado_bridge.core.metadata import FieldValue, ManifestMetadata, extract_metadata
from mado_bridge.core.types import FieldState, IdentityRole, ValueType
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)

_GENDERS = {"M": "male", "F": "female", "O": "other"}


# =============================================================================
# Identities
# =============================================================================


@dataclass(frozen=True)
class ResourceIds:
    """Resource ids of one conversion, computed once up front."""

    composition: str
    patient: str
    study: str
    device: str
    practitioner: str | None = None
    endpoints: tuple[tuple[str, str], ...] = ()

    def endpoint_for(self, base_url: str | None) -> str | None:
        for url, endpoint_id in self.endpoints:
            if url == base_url:
                return endpoint_id
        return None

    @classmethod
    def generate(
        cls,
        ids: IdentityGenerator,
        metadata: ManifestMetadata,
        endpoint_urls: list[str],
    ) -> ResourceIds:
        practitioner = None
        if metadata.referring_physician.is_meaningful:
            practitioner = ids.identity(
                IdentityRole.PRACTITIONER, metadata.referring_physician.text
            )
        return cls(
            composition=ids.identity(IdentityRole.COMPOSITION, metadata.sop_instance_uid),
            patient=ids.identity(
                IdentityRole.PATIENT,
                metadata.patient_id.value,
                metadata.patient_id_issuer.value,
            ),
            study=ids.identity(IdentityRole.STUDY, metadata.study_uid),
            device=ids.identity(
                IdentityRole.DEVICE,
                metadata.manufacturer.value,
                metadata.sop_instance_uid,
            ),
            practitioner=practitioner,
            endpoints=tuple(
                (url, ids.identity(IdentityRole.ENDPOINT, url)) for url in endpoint_urls
            ),
        )


def ref(resource_id: str) -> Reference:
    """Local (bundle-scoped) reference to a resource id."""
    return Reference(reference=UUID_PREFIX + resource_id)


def concept(*codings: Coding) -> CodeableConcept:
    return CodeableConcept(coding=list(codings))


def dcm_concept(code: str) -> CodeableConcept:
    return concept(Coding(system=DCM_SYSTEM, code=code))


# =============================================================================
# Extension helpers
# =============================================================================


def string_extension(url: str, value: str) -> Extension:
    return Extension(url=url, valueString=value)


def state_extension(url: str, field_value: FieldValue) -> Extension:
    """Side-channel extension keeping the absent/empty/present distinction."""
    if field_value.state is FieldState.PRESENT:
        return string_extension(url, field_value.text)
    marker = MARKER_EMPTY if field_value.state is FieldState.EMPTY else MARKER_UNSET
    return Extension(url=url, valueCode=marker)


def _optional_string_extensions(pairs: list[tuple[str, str | None]]) -> list[Extension]:
    return [string_extension(url, value) for url, value in pairs if value]


# =============================================================================
# Resource builders
# =============================================================================


def human_name(person_name: str, use: str | None = None) -> HumanName:
    """Split a DICOM PN (family^given^middle^prefix^suffix) into a HumanName."""
    parts = [p.strip() for p in person_name.split("=")[0].split("^")]
    parts += [""] * (5 - len(parts))
    family, given, middle, prefix, suffix = parts[:5]
    given_names = [g for g in (given, middle) if g]
    return HumanName(
        use=use,
        family=family or None,
        given=given_names or None,
        prefix=[prefix] if prefix else None,
        suffix=[suffix] if suffix else None,
        text=person_name if not family and not given_names else None,
    )


def build_patient(metadata: ManifestMetadata, patient_id: str) -> Patient:
    """Patient with the issuer-qualified identifier and demographic fields.

    The identifier carries the original Patient ID state so that an absent
    and an empty Patient ID come back as they were.
    """
    extensions = [
        state_extension(EXT_PATIENT_ID, metadata.patient_id),
        state_extension(EXT_PATIENT_ID_NAMESPACE, metadata.patient_id_issuer),
    ]
    if metadata.type_of_patient_id:
        extensions.append(string_extension(EXT_TYPE_OF_PATIENT_ID, metadata.type_of_patient_id))
    issuer = metadata.effective_patient_issuer
    identifier = Identifier(
        extension=extensions,
        system=OID_PREFIX + issuer if issuer and _is_oid(issuer) else None,
        value=metadata.patient_id.text or None,
    )

    if metadata.patient_name:
        name = human_name(metadata.patient_name, use="official")
    else:
        name = HumanName(use="anonymous", text=ANONYMOUS_PATIENT_NAME)
    return Patient(
        id=patient_id,
        identifier=[identifier],
        name=[name],
        gender=_GENDERS.get((metadata.patient_sex or "").upper(), "unknown"),
        birthDate=dicom_date_to_fhir(metadata.patient_birth_date),
    )


def build_device(
    metadata: ManifestMetadata, device_id: str, settings: Settings
) -> Device:
    """Device that authored the manifest, with defaults for absent fields."""
    defaults = settings.defaults
    return Device(
        id=device_id,
        extension=[state_extension(EXT_ORIGINAL_MANUFACTURER, metadata.manufacturer)],
        manufacturer=metadata.manufacturer.or_default(defaults.device_manufacturer),
        name=[
            DeviceName(
                value=metadata.model_name or defaults.device_model,
                type="user-friendly-name",
            )
        ],
        version=[DeviceVersion(value=metadata.software_version or defaults.software_version)],
        category=[concept(codes.DIAGNOSTIC_IMAGING_EQUIPMENT.to_coding())],
        owner=Reference(display=metadata.institution_name or defaults.institution_name),
    )


def build_practitioner(metadata: ManifestMetadata, practitioner_id: str) -> Practitioner:
    return Practitioner(
        id=practitioner_id,
        name=[human_name(metadata.referring_physician.text)],
    )


def build_endpoint(base_url: str, endpoint_id: str) -> Endpoint:
    """WADO-RS endpoint for one retrieval base URL."""
    return Endpoint(
        id=endpoint_id,
        status="active",
        connectionType=[
            concept(
                Coding(system=ENDPOINT_CONNECTION_TYPE_SYSTEM, code=WADO_RS_CONNECTION_TYPE)
            )
        ],
        payload=[EndpointPayload(mimeType=list(WADO_RS_MIME_TYPES))],
        address=base_url,
    )


# -----------------------------------------------------------------------------
# Image library (TID 1600) enrichment
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class LibraryInstance:
    number: int | None = None
    frames: int | None = None


@dataclass
class LibrarySeries:
    """Series-level data found in one Image Library Group."""

    description: str | None = None
    number: int | None = None
    date: str | None = None
    time: str | None = None
    modality: str | None = None
    instances: dict[str, LibraryInstance] = field(default_factory=dict)


def _item_int(item: SRContentNode | None) -> int | None:
    if item is None:
        return None
    if item.numeric is not None:
        return item.numeric.as_int()
    text = (item.text or "").strip()
    return int(text) if text.lstrip("-").isdigit() else None


def read_image_library(content: SRContentNode) -> dict[str, LibrarySeries]:
    """Index the Image Library groups of a content tree by Series Instance UID.

    Args:
        content: Root of the content tree

    Returns:
        Mapping of series UID to the series/instance data of its group;
        empty when the tree carries no Image Library

    """
    library = find_by_concept(content, codes.IMAGE_LIBRARY)
    if library is None:
        return {}

    index: dict[str, LibrarySeries] = {}
    for group in library.children:
        if not group.has_concept(codes.IMAGE_LIBRARY_GROUP):
            continue
        uid_item = group.child(codes.SERIES_INSTANCE_UID)
        if uid_item is None or not uid_item.text:
            continue
        modality_item = group.child(codes.MODALITY)
        series = LibrarySeries(
            description=_child_text(group, codes.SERIES_DESCRIPTION),
            number=_item_int(group.child(codes.SERIES_NUMBER)),
            date=_child_text(group, codes.SERIES_DATE),
            time=_child_text(group, codes.SERIES_TIME),
            modality=(
                modality_item.code.value
                if modality_item is not None and modality_item.code is not None
                else None
            ),
        )
        for entry in group.children:
            if entry.value_type != ValueType.IMAGE:
                continue
            instance = LibraryInstance(
                number=_item_int(entry.child(codes.INSTANCE_NUMBER)),
                frames=_item_int(entry.child(codes.NUMBER_OF_FRAMES)),
            )
            for sop in entry.references:
                series.instances.setdefault(sop.instance_uid, instance)
        index[uid_item.text.strip()] = series
    return index


def _child_text(node: SRContentNode, name: CodedConcept) -> str | None:
    item = node.child(name)
    if item is None or item.text is None:
        return None
    return item.text.strip() or None


# -----------------------------------------------------------------------------
# ImagingStudy
# -----------------------------------------------------------------------------


def number_instances(
    series: EvidenceSeries, library: LibrarySeries | None
) -> tuple[list[tuple[EvidenceInstance, int]], bool]:
    """Resolve instance numbers for a series.

    Image Library numbers win; evidence numbers are the fallback; instances
    with neither are numbered by their position in the series.

    Returns:
        (instance, number) pairs in evidence order, and whether any number
        had to be assigned by position

    """
    numbered = []
    sequential = False
    for position, instance in enumerate(series.instances, start=1):
        lib = library.instances.get(instance.instance_uid) if library else None
        if lib is not None and lib.frames is not None:
            instance = replace(instance, number_of_frames=lib.frames)
        number = lib.number if lib is not None and lib.number is not None else None
        if number is None:
            number = instance.instance_number
        if number is None:
            number = position
            sequential = True
        numbered.append((instance, number))
    return numbered, sequential


def build_instance(instance: EvidenceInstance, number: int) -> ImagingStudySeriesInstance:
    extensions = _optional_string_extensions(
        [(EXT_INSTANCE_DESCRIPTION, instance.description)]
    )
    return ImagingStudySeriesInstance(
        extension=extensions or None,
        uid=instance.instance_uid,
        sopClass=Coding(system=RFC3986_SYSTEM, code=OID_PREFIX + instance.class_uid),
        number=number if number > 0 else None,
    )


def build_series(
    series: EvidenceSeries,
    library: LibrarySeries | None,
    ids: ResourceIds,
    body_site: CodedConcept | None,
    offset: str | None = None,
) -> ImagingStudySeries:
    """One ImagingStudy.series entry, enriched from its Image Library group."""
    modality = series.modality or (library.modality if library else None) or FALLBACK_MODALITY
    extensions: list[Extension] = []
    started = None
    if library is not None:
        extensions = _optional_string_extensions(
            [(EXT_SERIES_DATE, library.date), (EXT_SERIES_TIME, library.time)]
        )
        started = to_fhir_datetime(library.date, library.time, offset)
    endpoint_id = ids.endpoint_for(series.base_url)

    numbered, sequential = number_instances(series, library)
    if sequential:
        logger.warning(
            "instance_numbers_assigned_sequentially",
            series_uid=series.series_uid,
            instances=len(numbered),
            reason="no instance number in image library or evidence",
        )
    number = library.number if library is not None else None
    return ImagingStudySeries(
        extension=extensions or None,
        uid=series.series_uid,
        number=number if number is not None and number >= 0 else None,
        modality=dcm_concept(modality),
        description=library.description if library is not None else None,
        numberOfInstances=len(series.instances),
        endpoint=[ref(endpoint_id)] if endpoint_id else None,
        bodySite=(
            CodeableReference(concept=concept(body_site.to_coding()))
            if body_site is not None
            else None
        ),
        started=started,
        instance=[build_instance(inst, n) for inst, n in numbered],
    )


def based_on(metadata: ManifestMetadata) -> list[Reference]:
    """One identifier reference per referenced request (accession number)."""
    accessions = [
        (request.accession_number, request.accession_issuer)
        for request in metadata.referenced_requests
        if request.accession_number
    ]
    if not accessions and metadata.accession_number:
        accessions = [(metadata.accession_number, metadata.accession_issuer)]

    return [
        Reference(
            type="ServiceRequest",
            identifier=Identifier(
                type=concept(Coding(system=V2_0203_SYSTEM, code="ACSN")),
                system=OID_PREFIX + issuer if issuer else None,
                value=accession,
            ),
        )
        for accession, issuer in accessions
    ]


def build_imaging_study(
    metadata: ManifestMetadata,
    evidence: EvidenceHierarchy,
    content: SRContentNode,
    ids: ResourceIds,
) -> ImagingStudy:
    """ImagingStudy with one series per evidence series, in evidence order."""
    extensions = _optional_string_extensions(
        [
            (EXT_STUDY_ID, metadata.study_id),
            (EXT_STUDY_TIME, metadata.study_time),
            (EXT_CONTENT_DATE, metadata.content_date),
            (EXT_CONTENT_TIME, metadata.content_time),
            (EXT_SERIES_DATE, metadata.series_date),
            (EXT_SERIES_TIME, metadata.series_time),
            (EXT_MANIFEST_SOP_INSTANCE_UID, metadata.sop_instance_uid),
            (EXT_MANIFEST_SERIES_INSTANCE_UID, metadata.series_uid),
        ]
    )
    extensions.append(state_extension(EXT_REFERRING_PHYSICIAN, metadata.referring_physician))

    library = read_image_library(content)
    body_site = body_site_to_fhir(metadata.target_region) if metadata.target_region else None
    series_entries = [
        build_series(
            series,
            library.get(series.series_uid),
            ids,
            body_site,
            metadata.timezone_offset,
        )
        for series in evidence.merged_series()
    ]
    modalities = list(dict.fromkeys(s.modality.coding[0].code for s in series_entries))

    return ImagingStudy(
        id=ids.study,
        extension=extensions,
        identifier=[Identifier(system=DICOM_UID_SYSTEM, value=OID_PREFIX + metadata.study_uid)],
        status="available",
        modality=[dcm_concept(modality) for modality in modalities] or None,
        subject=ref(ids.patient),
        started=to_fhir_datetime(
            metadata.study_date, metadata.study_time, metadata.timezone_offset
        ),
        basedOn=based_on(metadata) or None,
        referrer=ref(ids.practitioner) if ids.practitioner else None,
        endpoint=[ref(endpoint_id) for _, endpoint_id in ids.endpoints] or None,
        numberOfSeries=len(series_entries),
        numberOfInstances=sum(len(s.instance or []) for s in series_entries),
        description=metadata.study_description or None,
        series=series_entries or None,
    )


# -----------------------------------------------------------------------------
# Key-image selections
# -----------------------------------------------------------------------------


def collect_key_images(
    content: SRContentNode,
) -> dict[CodedConcept, list[tuple[str, str]]]:
    """Group key-image references by their exact designation code triple.

    Returns:
        Designation code -> ordered, de-duplicated (class UID, instance UID) list

    """
    groups: dict[CodedConcept, list[tuple[str, str]]] = {}
    for _, node in walk(content):
        if node.value_type != ValueType.IMAGE or not is_key_image_code(node.concept_name):
            continue
        refs = groups.setdefault(node.concept_name, [])
        for sop in node.references:
            pair = (sop.class_uid, sop.instance_uid)
            if pair not in refs:
                refs.append(pair)
    return {code: refs for code, refs in groups.items() if refs}


def collect_title_modifiers(content: SRContentNode) -> dict[CodedConcept, CodedConcept]:
    """Document Title Modifier in effect for each designation that needs one.

    A modifier among the IMAGE item's siblings wins over one at the root.
    """
    root_modifier = title_modifier(content)
    modifiers: dict[CodedConcept, CodedConcept] = {}

    def visit(parent: SRContentNode) -> None:
        for child in parent.children:
            if child.value_type == ValueType.IMAGE and requires_title_modifier(
                child.concept_name
            ):
                modifier = title_modifier(parent) or root_modifier
                if modifier is not None:
                    modifiers.setdefault(child.concept_name, modifier)
            visit(child)

    visit(content)
    return modifiers


def build_selection(
    selection_id: str,
    code: CodedConcept,
    references: list[tuple[str, str]],
    ids: ResourceIds,
    created: str | None,
    modifier: CodedConcept | None = None,
) -> Basic:
    """Key-image selection as a Basic resource carrying the selected instances."""
    extensions = [
        Extension(url=EXT_SELECTION_CODE, valueCodeableConcept=concept(code.to_coding())),
        Extension(url=EXT_DERIVED_FROM, valueReference=ref(ids.study)),
    ]
    if modifier is not None:
        extensions.append(
            Extension(url=EXT_TITLE_MODIFIER, valueCodeableConcept=concept(modifier.to_coding()))
        )
    for class_uid, instance_uid in references:
        extensions.append(
            Extension(
                url=EXT_SELECTED_INSTANCE,
                extension=[
                    Extension(url="uid", valueString=instance_uid),
                    Extension(
                        url="sopClass",
                        valueCoding=Coding(system=RFC3986_SYSTEM, code=OID_PREFIX + class_uid),
                    ),
                ],
            )
        )
    return Basic(
        id=selection_id,
        extension=extensions,
        code=concept(
            Coding(system=FHIR_TYPES_SYSTEM, code="ImagingSelection", display="ImagingSelection")
        ),
        subject=ref(ids.patient),
        created=created,
    )


# -----------------------------------------------------------------------------
# Composition
# -----------------------------------------------------------------------------


def composition_title(metadata: ManifestMetadata) -> str:
    label = metadata.study_description or metadata.accession_number or metadata.study_uid
    return COMPOSITION_TITLE_PREFIX + label


def build_composition(
    metadata: ManifestMetadata,
    ids: ResourceIds,
    selection_ids: list[str],
    date: str,
) -> Composition:
    authors = [ref(ids.device)]
    if ids.practitioner:
        authors.append(ref(ids.practitioner))
    sections = [CompositionSection(title="Imaging Study", entry=[ref(ids.study)])]
    if selection_ids:
        sections.append(
            CompositionSection(
                title="Key Image Selections", entry=[ref(s) for s in selection_ids]
            )
        )
    return Composition(
        id=ids.composition,
        meta=Meta(profile=[MADO_COMPOSITION_PROFILE]),
        identifier=[
            Identifier(system=DICOM_UID_SYSTEM, value=OID_PREFIX + metadata.sop_instance_uid)
        ],
        status="final",
        type=concept(codes.DIAGNOSTIC_IMAGING_STUDY.to_coding()),
        subject=[ref(ids.patient)],
        date=date,
        author=authors,
        title=composition_title(metadata),
        section=sections,
    )


def document_date(metadata: ManifestMetadata) -> str:
    """Content date/time, else study date/time, else the current time."""
    return (
        to_fhir_datetime(metadata.content_date, metadata.content_time, metadata.timezone_offset)
        or to_fhir_datetime(metadata.study_date, metadata.study_time, metadata.timezone_offset)
        or datetime.now(UTC).isoformat(timespec="seconds")
    )


def as_instant(value: str) -> str:
    """Widen a FHIR date/dateTime to an instant (UTC assumed when no zone)."""
    if len(value) == 10:
        return value + "T00:00:00Z"
    if value.endswith("Z") or value[-6] in "+-":
        return value
    return value + "Z"


def _is_oid(value: str) -> bool:
    parts = value.split(".")
    return len(parts) > 1 and all(part.isdigit() for part in parts)


def entry(resource: Resource) -> BundleEntry:
    return BundleEntry(fullUrl=UUID_PREFIX + resource.id, resource=resource)


# =============================================================================
# Mapper
# =============================================================================


class ForwardMapper:
    """Converts KOS manifests to FHIR document bundles.

    Example:
        >>> mapper = ForwardMapper()
        >>> bundle = mapper.to_bundle(pydicom.dcmread("manifest.dcm"))
        >>> bundle.entry[0].resource.get_resource_type()
        'Composition'

    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.ids = IdentityGenerator(self.settings.identity.deterministic)

    def to_bundle(self, dataset: Dataset) -> Bundle:
        """Convert a KOS dataset into a MADO document bundle.

        Args:
            dataset: KOS manifest

        Returns:
            FHIR R5 document Bundle

        Raises:
            UnsupportedDocumentError: If the dataset is not a KOS document
            SchemaValidationError: If a mapped value is rejected by the FHIR models

        """
        content = SRContentNode.from_dataset(dataset)
        metadata = extract_metadata(dataset, content)
        evidence = EvidenceHierarchy.from_dataset(dataset)
        try:
            return self.build(metadata, content, evidence)
        except ValidationError as e:
            raise schema_error(
                e, f"Manifest {metadata.sop_instance_uid} maps to invalid FHIR resources"
            ) from e

    def build(
        self,
        metadata: ManifestMetadata,
        content: SRContentNode,
        evidence: EvidenceHierarchy,
    ) -> Bundle:
        """Assemble the bundle from an already-parsed manifest."""
        endpoint_urls = [
            url for url in evidence.base_urls() if url.startswith(("http://", "https://"))
        ]
        ids = ResourceIds.generate(self.ids, metadata, endpoint_urls)
        date = document_date(metadata)

        patient = build_patient(metadata, ids.patient)
        device = build_device(metadata, ids.device, self.settings)
        practitioner = (
            build_practitioner(metadata, ids.practitioner) if ids.practitioner else None
        )
        endpoints = [build_endpoint(url, endpoint_id) for url, endpoint_id in ids.endpoints]
        study = build_imaging_study(metadata, evidence, content, ids)

        modifiers = collect_title_modifiers(content)
        selections = []
        for code, references in collect_key_images(content).items():
            selection_id = self.ids.identity(
                IdentityRole.IMAGING_SELECTION,
                metadata.study_uid,
                references[0][1],
                code.scheme,
                code.value,
                code.meaning,
            )
            selections.append(
                build_selection(
                    selection_id, code, references, ids, date, modifiers.get(code)
                )
            )

        composition = build_composition(metadata, ids, [s.id for s in selections], date)

        resources: list[Resource] = [composition, patient, device]
        if practitioner is not None:
            resources.append(practitioner)
        resources.extend(endpoints)
        resources.append(study)
        resources.extend(selections)

        bundle = Bundle(
            meta=Meta(profile=[MADO_BUNDLE_PROFILE]),
            identifier=Identifier(
                system=DICOM_UID_SYSTEM, value=OID_PREFIX + metadata.sop_instance_uid
            ),
            type="document",
            timestamp=as_instant(date),
            entry=[entry(resource) for resource in resources],
        )
        logger.info(
            "bundle_built",
            sop_instance_uid=metadata.sop_instance_uid,
            entries=len(resources),
            series=study.numberOfSeries,
            instances=study.numberOfInstances,
            selections=len(selections),
            practitioner=practitioner is not None,
        )
        return bundle


def to_bundle(dataset: Dataset, settings: Settings | None = None) -> Bundle:
    """Convert a KOS dataset into a MADO document bundle."""
    return ForwardMapper(settings).to_bundle(dataset)
