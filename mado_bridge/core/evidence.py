"""Evidence hierarchy: Study -> Series -> SOP Instance.

Models the Current Requested Procedure Evidence Sequence of a KOS document,
the list of every instance the manifest claims to reference. Series carry the
retrieval descriptors (WADO-RS URL, AE title, location UID); instances carry the
MADO per-instance attributes (instance number, rows, columns, frame count).
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, replace

from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from mado_bridge.core.constants import STUDIES_PATH_SEGMENT

_DIMENSIONS_RE = re.compile(r"^(\d+)x(\d+)(?: \((\d+) frames?\))?$")
_FRAMES_RE = re.compile(r"^(\d+) frames?$")


@dataclass(frozen=True)
class EvidenceInstance:
    """A Referenced SOP Sequence item of an evidence series."""

    class_uid: str
    instance_uid: str
    instance_number: int | None = None
    rows: int | None = None
    columns: int | None = None
    number_of_frames: int | None = None

    @property
    def description(self) -> str | None:
        """Compact "RxC (N frames)" / "N frames" summary, None if nothing known."""
        if self.rows and self.columns:
            text = f"{self.rows}x{self.columns}"
            if self.number_of_frames:
                text += f" ({self.number_of_frames} frames)"
            return text
        if self.number_of_frames:
            return f"{self.number_of_frames} frames"
        return None

    def with_description(self, description: str | None) -> EvidenceInstance:
        """Copy with rows/columns/frames parsed from a compact description.

        Values already set on the instance win over parsed ones.
        """
        rows, columns, frames = parse_description(description)
        return replace(
            self,
            rows=self.rows if self.rows is not None else rows,
            columns=self.columns if self.columns is not None else columns,
            number_of_frames=(
                self.number_of_frames if self.number_of_frames is not None else frames
            ),
        )


def parse_description(description: str | None) -> tuple[int | None, int | None, int | None]:
    """Parse "RxC", "RxC (N frames)" or "N frames" into (rows, columns, frames)."""
    if not description:
        return None, None, None
    text = description.strip()
    match = _DIMENSIONS_RE.match(text)
    if match:
        frames = match.group(3)
        return int(match.group(1)), int(match.group(2)), int(frames) if frames else None
    match = _FRAMES_RE.match(text)
    if match:
        return None, None, int(match.group(1))
    return None, None, None


@dataclass(frozen=True)
class EvidenceSeries:
    """A Referenced Series Sequence item."""

    series_uid: str
    modality: str | None = None
    retrieve_url: str | None = None
    retrieve_ae_title: str | None = None
    retrieve_location_uid: str | None = None
    instances: tuple[EvidenceInstance, ...] = ()

    @property
    def base_url(self) -> str | None:
        """WADO-RS base URL: the retrieve URL up to the ``/studies/`` segment."""
        if not self.retrieve_url:
            return None
        head, sep, _ = self.retrieve_url.partition(STUDIES_PATH_SEGMENT)
        return head if sep else self.retrieve_url


@dataclass(frozen=True)
class EvidenceStudy:
    """A Current Requested Procedure Evidence Sequence item."""

    study_uid: str
    series: tuple[EvidenceSeries, ...] = ()


@dataclass(frozen=True)
class EvidenceHierarchy:
    """The full evidence tree of a manifest.

    Attributes:
        studies: Study items in sequence order
        present: False when the evidence sequence attribute is missing entirely

    """

    studies: tuple[EvidenceStudy, ...] = ()
    present: bool = True

    @classmethod
    def from_dataset(cls, dataset: Dataset) -> EvidenceHierarchy:
        """Read the Current Requested Procedure Evidence Sequence."""
        study_items = dataset.get("CurrentRequestedProcedureEvidenceSequence")
        if study_items is None:
            return cls(studies=(), present=False)
        studies = []
        for study_item in study_items:
            series = []
            for series_item in study_item.get("ReferencedSeriesSequence", []):
                instances = tuple(
                    EvidenceInstance(
                        class_uid=_str(sop, "ReferencedSOPClassUID") or "",
                        instance_uid=_str(sop, "ReferencedSOPInstanceUID") or "",
                        instance_number=_int(sop, "InstanceNumber"),
                        rows=_int(sop, "Rows"),
                        columns=_int(sop, "Columns"),
                        number_of_frames=_int(sop, "NumberOfFrames"),
                    )
                    for sop in series_item.get("ReferencedSOPSequence", [])
                )
                series.append(
                    EvidenceSeries(
                        series_uid=_str(series_item, "SeriesInstanceUID") or "",
                        modality=_str(series_item, "Modality"),
                        retrieve_url=_str(series_item, "RetrieveURL"),
                        retrieve_ae_title=_str(series_item, "RetrieveAETitle"),
                        retrieve_location_uid=_str(series_item, "RetrieveLocationUID"),
                        instances=instances,
                    )
                )
            studies.append(
                EvidenceStudy(
                    study_uid=_str(study_item, "StudyInstanceUID") or "",
                    series=tuple(series),
                )
            )
        return cls(studies=tuple(studies), present=True)

    def to_sequence(self) -> Sequence:
        """Render as a Current Requested Procedure Evidence Sequence."""
        study_items = []
        for study in self.studies:
            study_item = Dataset()
            study_item.StudyInstanceUID = study.study_uid
            series_items = []
            for series in study.series:
                series_item = Dataset()
                if series.modality:
                    series_item.Modality = series.modality
                series_item.SeriesInstanceUID = series.series_uid
                if series.retrieve_ae_title:
                    series_item.RetrieveAETitle = series.retrieve_ae_title
                if series.retrieve_location_uid:
                    series_item.RetrieveLocationUID = series.retrieve_location_uid
                if series.retrieve_url:
                    series_item.RetrieveURL = series.retrieve_url
                series_item.ReferencedSOPSequence = Sequence(
                    [_instance_item(instance) for instance in series.instances]
                )
                series_items.append(series_item)
            study_item.ReferencedSeriesSequence = Sequence(series_items)
            study_items.append(study_item)
        return Sequence(study_items)

    def iter_series(self) -> Iterator[tuple[EvidenceStudy, EvidenceSeries]]:
        for study in self.studies:
            for series in study.series:
                yield study, series

    def iter_instances(self) -> Iterator[EvidenceInstance]:
        for _, series in self.iter_series():
            yield from series.instances

    def instance_uids(self) -> set[str]:
        return {inst.instance_uid for inst in self.iter_instances() if inst.instance_uid}

    def merged_series(self) -> list[EvidenceSeries]:
        """Series keyed by Series Instance UID in order of first appearance.

        A series listed under several study items is merged into one entry;
        instances are de-duplicated by SOP Instance UID, first one wins.
        """
        merged: dict[str, EvidenceSeries] = {}
        for _, series in self.iter_series():
            existing = merged.get(series.series_uid)
            if existing is None:
                merged[series.series_uid] = replace(
                    series, instances=_unique_instances(series.instances)
                )
                continue
            merged[series.series_uid] = replace(
                existing,
                instances=_unique_instances(existing.instances + series.instances),
                retrieve_url=existing.retrieve_url or series.retrieve_url,
                modality=existing.modality or series.modality,
            )
        return list(merged.values())

    def base_urls(self) -> list[str]:
        """Distinct WADO-RS base URLs in order of first appearance."""
        urls: dict[str, None] = {}
        for _, series in self.iter_series():
            if series.base_url:
                urls.setdefault(series.base_url, None)
        return list(urls)

    @property
    def counts(self) -> tuple[int, int, int]:
        """(studies, series, instances)."""
        series = sum(len(study.series) for study in self.studies)
        instances = sum(1 for _ in self.iter_instances())
        return len(self.studies), series, instances


def _unique_instances(instances: tuple[EvidenceInstance, ...]) -> tuple[EvidenceInstance, ...]:
    seen: dict[str, EvidenceInstance] = {}
    for instance in instances:
        seen.setdefault(instance.instance_uid, instance)
    return tuple(seen.values())


def _instance_item(instance: EvidenceInstance) -> Dataset:
    sop = Dataset()
    sop.ReferencedSOPClassUID = instance.class_uid
    sop.ReferencedSOPInstanceUID = instance.instance_uid
    if instance.instance_number is not None:
        sop.InstanceNumber = instance.instance_number
    if instance.rows is not None:
        sop.Rows = instance.rows
    if instance.columns is not None:
        sop.Columns = instance.columns
    if instance.number_of_frames is not None:
        sop.NumberOfFrames = instance.number_of_frames
    return sop


def _str(item: Dataset, keyword: str) -> str | None:
    value = item.get(keyword)
    if value is None:
        return None
    return str(value).strip()


def _int(item: Dataset, keyword: str) -> int | None:
    value = item.get(keyword)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
