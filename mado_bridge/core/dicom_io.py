"""Reading and writing KOS manifest files with pydicom."""

from __future__ import annotations

from pathlib import Path

import pydicom
from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.errors import InvalidDicomError
from pydicom.uid import ExplicitVRLittleEndian

from mado_bridge.core.exceptions import ManifestReadError
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)

MAX_MANIFEST_SIZE = 64 * 1024 * 1024


def read_manifest(file_path: str | Path) -> Dataset:
    """Read a DICOM manifest from disk.

    Args:
        file_path: Path to a DICOM Part 10 file

    Returns:
        Parsed dataset

    Raises:
        ManifestReadError: If the file is missing, too large or not DICOM

    """
    path = Path(file_path)
    if not path.is_file():
        raise ManifestReadError(
            f"File does not exist: {path}",
            error_code="FILE_NOT_FOUND",
            context={"file_path": str(path)},
        )

    size = path.stat().st_size
    if size > MAX_MANIFEST_SIZE:
        raise ManifestReadError(
            f"File size {size} exceeds maximum {MAX_MANIFEST_SIZE}",
            error_code="FILE_TOO_LARGE",
            context={"file_size": size, "max_size": MAX_MANIFEST_SIZE},
        )

    try:
        dataset = pydicom.dcmread(str(path))
    except (InvalidDicomError, OSError) as e:
        raise ManifestReadError(
            f"Invalid DICOM file format: {e}",
            error_code="INVALID_DICOM_FORMAT",
            context={"file_path": str(path)},
        ) from e

    logger.debug("manifest_read", file=str(path), size=size)
    return dataset


def ensure_file_meta(dataset: Dataset) -> Dataset:
    """Attach Part 10 file meta information (Explicit VR Little Endian)."""
    file_meta = getattr(dataset, "file_meta", None)
    if file_meta is None:
        file_meta = FileMetaDataset()
        dataset.file_meta = file_meta
    file_meta.MediaStorageSOPClassUID = dataset.SOPClassUID
    file_meta.MediaStorageSOPInstanceUID = dataset.SOPInstanceUID
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian
    return dataset


def write_manifest(dataset: Dataset, file_path: str | Path) -> Path:
    """Write a manifest as a DICOM Part 10 file.

    Args:
        dataset: KOS dataset, e.g. from ReverseMapper.to_dataset
        file_path: Destination path; parent directories are created

    Returns:
        The written path

    """
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ensure_file_meta(dataset)
    dataset.save_as(str(path), enforce_file_format=True)
    logger.debug("manifest_written", file=str(path))
    return path
