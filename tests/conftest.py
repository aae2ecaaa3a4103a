"""
Pytest configuration and shared fixtures for MADO Bridge tests.
"""

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from mado_bridge.core import codes
from mado_bridge.core.codes import CodedConcept
from mado_bridge.core.config import Settings
from mado_bridge.core.constants import KOS_SOP_CLASS_UID
from mado_bridge.core.content_tree import SOPReference, SRContentNode, code_dataset
from mado_bridge.core.evidence import (
    EvidenceHierarchy,
    EvidenceInstance,
    EvidenceSeries,
    EvidenceStudy,
)
from mado_bridge.core.types import RelationshipType

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"
WADO_BASE_URL = "https://pacs.example.org/dicom-web"


@dataclass(frozen=True)
class ManifestUIDs:
    """UIDs shared by the manifest fixtures."""

    kos: str = "1.2.826.0.1.3680043.8.498.100"
    kos_series: str = "1.2.826.0.1.3680043.8.498.101"
    study: str = "1.2.826.0.1.3680043.8.498.200"
    series: str = "1.2.826.0.1.3680043.8.498.201"
    instances: tuple[str, ...] = (
        "1.2.826.0.1.3680043.8.498.202",
        "1.2.826.0.1.3680043.8.498.203",
    )
    patient_issuer: str = "1.2.826.0.1.3680043.8.498.1"
    sop_class: str = CT_IMAGE_STORAGE


UIDS = ManifestUIDs()


def image_reference(instance_uid: str) -> SOPReference:
    return SOPReference(CT_IMAGE_STORAGE, instance_uid)


def library_container(
    instance_uids: tuple[str, ...], numbered: bool = True, frames: int | None = None
) -> SRContentNode:
    """Image Library with one group for the fixture series."""
    acq = RelationshipType.HAS_ACQ_CONTEXT
    items = [
        SRContentNode.code_item(codes.MODALITY, CodedConcept("CT", "DCM", "CT"), acq),
        SRContentNode.uidref_item(codes.SERIES_INSTANCE_UID, UIDS.series, acq),
        SRContentNode.text_item(codes.SERIES_DESCRIPTION, "Axial 5mm", acq),
        SRContentNode.text_item(codes.SERIES_NUMBER, "3", acq),
        SRContentNode.text_item(codes.SERIES_DATE, "20240315", acq),
        SRContentNode.text_item(codes.SERIES_TIME, "101600", acq),
        SRContentNode.num_item(codes.NUMBER_OF_SERIES_RELATED_INSTANCES, len(instance_uids)),
    ]
    for number, uid in enumerate(instance_uids, start=1):
        children = []
        if numbered:
            children.append(SRContentNode.text_item(codes.INSTANCE_NUMBER, str(number * 10), acq))
        if frames:
            children.append(SRContentNode.num_item(codes.NUMBER_OF_FRAMES, frames))
        items.append(SRContentNode.image_item([image_reference(uid)], children=children))
    group = SRContentNode.container(codes.IMAGE_LIBRARY_GROUP, items)
    return SRContentNode.container(codes.IMAGE_LIBRARY, [group])


def key_image(concept: CodedConcept, *instance_uids: str) -> SRContentNode:
    return SRContentNode.image_item(
        [image_reference(uid) for uid in instance_uids], concept=concept
    )


def standard_content(
    instance_uids: tuple[str, ...] = UIDS.instances,
    include_library: bool = True,
    numbered: bool = True,
    key_images: tuple[tuple[CodedConcept, tuple[str, ...]], ...] = (),
) -> list[SRContentNode]:
    """Root children of a TID 2010 manifest for the fixture study."""
    children = [
        SRContentNode.text_item(codes.KEY_OBJECT_DESCRIPTION, "Key images for review"),
        SRContentNode.code_item(codes.MODALITY, CodedConcept("CT", "DCM", "CT")),
        SRContentNode.uidref_item(codes.STUDY_INSTANCE_UID, UIDS.study),
        SRContentNode.code_item(codes.TARGET_REGION, codes.DEFAULT_TARGET_REGION),
    ]
    if include_library:
        children.append(library_container(instance_uids, numbered=numbered))
    children.extend(key_image(concept, *uids) for concept, uids in key_images)
    return children


def standard_evidence(
    instance_uids: tuple[str, ...] = UIDS.instances,
    retrieve_url: str | None = f"{WADO_BASE_URL}/studies/{UIDS.study}/series/{UIDS.series}",
    **series_fields: Any,
) -> EvidenceHierarchy:
    series = EvidenceSeries(
        series_uid=UIDS.series,
        modality="CT",
        retrieve_url=retrieve_url,
        instances=tuple(
            EvidenceInstance(CT_IMAGE_STORAGE, uid, rows=512, columns=512)
            for uid in instance_uids
        ),
        **series_fields,
    )
    return EvidenceHierarchy(studies=(EvidenceStudy(UIDS.study, (series,)),))


def make_kos_dataset(
    content: list[SRContentNode] | None = None,
    evidence: EvidenceHierarchy | None = None,
    title: CodedConcept = codes.MANIFEST,
    **attributes: Any,
) -> Dataset:
    """Build a KOS manifest dataset.

    Args:
        content: Root content items (default: ``standard_content()``)
        evidence: Evidence hierarchy (default: ``standard_evidence()``)
        title: Document title code
        **attributes: Header attributes to set; ``None`` removes the attribute

    """
    ds = Dataset()
    ds.SpecificCharacterSet = "ISO_IR 192"
    ds.SOPClassUID = KOS_SOP_CLASS_UID
    ds.SOPInstanceUID = UIDS.kos
    ds.PatientName = "Doe^Jane"
    ds.PatientID = "PAT-001"
    ds.IssuerOfPatientID = UIDS.patient_issuer
    ds.PatientBirthDate = "19800101"
    ds.PatientSex = "F"
    ds.StudyInstanceUID = UIDS.study
    ds.StudyDate = "20240315"
    ds.StudyTime = "101500"
    ds.StudyID = "S1"
    ds.StudyDescription = "CT Abdomen"
    ds.AccessionNumber = "ACC-001"
    ds.ReferringPhysicianName = "Smith^John"
    ds.Modality = "KO"
    ds.SeriesInstanceUID = UIDS.kos_series
    ds.SeriesNumber = 1
    ds.SeriesDate = "20240315"
    ds.SeriesTime = "103000"
    ds.Manufacturer = "ACME Imaging"
    ds.ManufacturerModelName = "Manifest Builder"
    ds.SoftwareVersions = "2.1"
    ds.InstitutionName = "General Hospital"
    ds.InstanceNumber = 1
    ds.ContentDate = "20240315"
    ds.ContentTime = "103000"
    ds.TimezoneOffsetFromUTC = "+0100"
    ds.ValueType = "CONTAINER"
    ds.ContinuityOfContent = "SEPARATE"
    ds.ConceptNameCodeSequence = Sequence([code_dataset(title)])

    evidence = evidence if evidence is not None else standard_evidence()
    ds.CurrentRequestedProcedureEvidenceSequence = evidence.to_sequence()
    children = content if content is not None else standard_content()
    ds.ContentSequence = Sequence([child.to_dataset() for child in children])

    for keyword, value in attributes.items():
        if value is None:
            if keyword in ds:
                delattr(ds, keyword)
        else:
            setattr(ds, keyword, value)
    return ds


@pytest.fixture
def uids() -> ManifestUIDs:
    """UIDs used by the manifest fixtures."""
    return UIDS


@pytest.fixture
def kos_factory() -> Callable[..., Dataset]:
    """Factory building KOS datasets; see ``make_kos_dataset``."""
    return make_kos_dataset


@pytest.fixture
def content_factory() -> Callable[..., list[SRContentNode]]:
    """Factory building root content items; see ``standard_content``."""
    return standard_content


@pytest.fixture
def evidence_factory() -> Callable[..., EvidenceHierarchy]:
    """Factory building evidence hierarchies; see ``standard_evidence``."""
    return standard_evidence


@pytest.fixture
def key_image_factory() -> Callable[..., SRContentNode]:
    """Factory building key-image IMAGE items."""
    return key_image


@pytest.fixture
def kos_dataset() -> Dataset:
    """A valid manifest: one CT series, two instances, an Image Library."""
    return make_kos_dataset()


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only, isolated from the process environment."""
    return Settings(_env_file=None)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files.

    Yields:
        Path to temporary directory that will be cleaned up after test
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def reset_structlog():
    """Reset structlog configuration after each test.

    This ensures tests don't interfere with each other's logging configuration.
    """
    import structlog

    yield

    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)


@pytest.fixture
def capture_logs(reset_structlog):
    """Capture log output for testing.

    Returns:
        List that will contain captured log entries
    """
    import structlog

    captured = []

    def capture_processor(logger, method_name, event_dict):
        """Capture event dict before rendering."""
        captured.append(event_dict.copy())
        return event_dict

    logging.basicConfig(level=logging.DEBUG)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            capture_processor,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    yield captured

    captured.clear()
