"""Structured Report content tree model.

SRContentNode is an immutable view of one content item of a KOS document:
its value type, relationship to the parent, concept name, type-dependent
payload and ordered children. Both mapping directions and the validator work
on this model instead of raw pydicom sequences.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Union

from pydicom.dataset import Dataset
from pydicom.sequence import Sequence

from mado_bridge.core.codes import DOCUMENT_TITLE_MODIFIER, NO_UNITS, CodedConcept
from mado_bridge.core.types import REFERENCE_VALUE_TYPES, RelationshipType, ValueType


@dataclass(frozen=True)
class SOPReference:
    """One Referenced SOP Sequence item of an IMAGE/COMPOSITE/WAVEFORM item."""

    class_uid: str
    instance_uid: str


@dataclass(frozen=True)
class NumericValue:
    """Measured value of a NUM item, kept as its decimal string."""

    value: str
    unit: CodedConcept | None = None

    def as_int(self) -> int | None:
        """Integer value, or None when the string is not integral."""
        try:
            number = float(self.value)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None


Payload = Union[str, CodedConcept, NumericValue, tuple[SOPReference, ...], None]


@dataclass(frozen=True)
class SRContentNode:
    """A content item of a Structured Report.

    Attributes:
        value_type: Value Type as read from the item (may be outside ValueType)
        relationship_type: Relationship Type, None only at the document root
        concept_name: Concept Name Code, if any
        value: Type-dependent payload; None when the companion attribute is absent
        children: Ordered nested content items
        code_sequence_length: Item count of the Concept Code Sequence (CODE only)
        has_purpose_of_reference: Purpose of Reference Code Sequence present

    """

    value_type: str
    relationship_type: str | None = None
    concept_name: CodedConcept | None = None
    value: Payload = None
    children: tuple[SRContentNode, ...] = ()
    code_sequence_length: int | None = None
    has_purpose_of_reference: bool = False

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def is_reference(self) -> bool:
        return self.value_type in REFERENCE_VALUE_TYPES

    @property
    def references(self) -> tuple[SOPReference, ...]:
        if self.is_reference and isinstance(self.value, tuple):
            return self.value
        return ()

    @property
    def text(self) -> str | None:
        return self.value if isinstance(self.value, str) else None

    @property
    def code(self) -> CodedConcept | None:
        return self.value if isinstance(self.value, CodedConcept) else None

    @property
    def numeric(self) -> NumericValue | None:
        return self.value if isinstance(self.value, NumericValue) else None

    @property
    def code_count(self) -> int:
        if self.code_sequence_length is not None:
            return self.code_sequence_length
        return 1 if self.code is not None else 0

    def has_concept(self, concept: CodedConcept) -> bool:
        return concept.matches(self.concept_name)

    def child(self, concept: CodedConcept) -> SRContentNode | None:
        """First direct child with the given concept name."""
        for node in self.children:
            if node.has_concept(concept):
                return node
        return None

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    @classmethod
    def container(
        cls,
        concept: CodedConcept,
        children: list[SRContentNode] | tuple[SRContentNode, ...] = (),
        relationship: RelationshipType | None = RelationshipType.CONTAINS,
    ) -> SRContentNode:
        return cls(
            ValueType.CONTAINER.value, _rel(relationship), concept, None, tuple(children)
        )

    @classmethod
    def text_item(
        cls,
        concept: CodedConcept,
        text: str,
        relationship: RelationshipType = RelationshipType.CONTAINS,
    ) -> SRContentNode:
        return cls(ValueType.TEXT.value, _rel(relationship), concept, text)

    @classmethod
    def code_item(
        cls,
        concept: CodedConcept,
        code: CodedConcept,
        relationship: RelationshipType = RelationshipType.CONTAINS,
    ) -> SRContentNode:
        return cls(ValueType.CODE.value, _rel(relationship), concept, code)

    @classmethod
    def uidref_item(
        cls,
        concept: CodedConcept,
        uid: str,
        relationship: RelationshipType = RelationshipType.CONTAINS,
    ) -> SRContentNode:
        return cls(ValueType.UIDREF.value, _rel(relationship), concept, uid)

    @classmethod
    def num_item(
        cls,
        concept: CodedConcept,
        number: int | str,
        relationship: RelationshipType = RelationshipType.HAS_ACQ_CONTEXT,
        unit: CodedConcept | None = NO_UNITS,
    ) -> SRContentNode:
        return cls(
            ValueType.NUM.value, _rel(relationship), concept, NumericValue(str(number), unit)
        )

    @classmethod
    def image_item(
        cls,
        references: list[SOPReference] | tuple[SOPReference, ...],
        concept: CodedConcept | None = None,
        children: list[SRContentNode] | tuple[SRContentNode, ...] = (),
        relationship: RelationshipType = RelationshipType.CONTAINS,
    ) -> SRContentNode:
        return cls(
            ValueType.IMAGE.value,
            _rel(relationship),
            concept,
            tuple(references),
            tuple(children),
        )

    # ------------------------------------------------------------------
    # pydicom conversion
    # ------------------------------------------------------------------

    @classmethod
    def from_dataset(cls, item: Dataset) -> SRContentNode:
        """Build a node (and its subtree) from a dataset or content item.

        Args:
            item: Root dataset or Content Sequence item

        Returns:
            Immutable node mirroring the item

        """
        value_type = str(item.get("ValueType", "") or "")
        relationship = item.get("RelationshipType")
        concept = _first_code(item, "ConceptNameCodeSequence")
        value: Payload = None
        code_length: int | None = None
        purpose = "PurposeOfReferenceCodeSequence" in item

        if value_type == ValueType.TEXT:
            value = _string(item, "TextValue")
        elif value_type == ValueType.UIDREF:
            value = _string(item, "UID")
        elif value_type == ValueType.PNAME:
            value = _string(item, "PersonName")
        elif value_type == ValueType.CODE:
            codes = item.get("ConceptCodeSequence")
            code_length = len(codes) if codes is not None else 0
            value = _first_code(item, "ConceptCodeSequence")
        elif value_type == ValueType.NUM:
            value = _numeric(item)
        elif value_type in REFERENCE_VALUE_TYPES:
            sop_items = item.get("ReferencedSOPSequence")
            if sop_items is not None:
                value = tuple(
                    SOPReference(
                        str(sop.get("ReferencedSOPClassUID", "") or ""),
                        str(sop.get("ReferencedSOPInstanceUID", "") or ""),
                    )
                    for sop in sop_items
                )
                purpose = purpose or any(
                    "PurposeOfReferenceCodeSequence" in sop for sop in sop_items
                )

        children = tuple(cls.from_dataset(child) for child in item.get("ContentSequence", []))
        return cls(
            value_type=value_type,
            relationship_type=str(relationship) if relationship is not None else None,
            concept_name=concept,
            value=value,
            children=children,
            code_sequence_length=code_length,
            has_purpose_of_reference=purpose,
        )

    def to_dataset(self) -> Dataset:
        """Render this node (and its subtree) as a Content Sequence item."""
        item = Dataset()
        if self.relationship_type is not None:
            item.RelationshipType = self.relationship_type
        item.ValueType = self.value_type
        if self.concept_name is not None:
            item.ConceptNameCodeSequence = Sequence([code_dataset(self.concept_name)])

        if self.value_type == ValueType.TEXT and self.text is not None:
            item.TextValue = self.text
        elif self.value_type == ValueType.UIDREF and self.text is not None:
            item.UID = self.text
        elif self.value_type == ValueType.PNAME and self.text is not None:
            item.PersonName = self.text
        elif self.value_type == ValueType.CODE and self.code is not None:
            item.ConceptCodeSequence = Sequence([code_dataset(self.code)])
        elif self.value_type == ValueType.NUM and self.numeric is not None:
            measured = Dataset()
            measured.NumericValue = self.numeric.value
            if self.numeric.unit is not None:
                measured.MeasurementUnitsCodeSequence = Sequence(
                    [code_dataset(self.numeric.unit)]
                )
            item.MeasuredValueSequence = Sequence([measured])
        elif self.is_reference:
            sop_items = []
            for ref in self.references:
                sop = Dataset()
                sop.ReferencedSOPClassUID = ref.class_uid
                sop.ReferencedSOPInstanceUID = ref.instance_uid
                sop_items.append(sop)
            item.ReferencedSOPSequence = Sequence(sop_items)

        if self.children:
            item.ContentSequence = Sequence([child.to_dataset() for child in self.children])
        return item


def _rel(relationship: RelationshipType | None) -> str | None:
    return relationship.value if relationship is not None else None


def _string(item: Dataset, keyword: str) -> str | None:
    value = item.get(keyword)
    return None if value is None else str(value)


def _first_code(item: Dataset, keyword: str) -> CodedConcept | None:
    codes = item.get(keyword)
    if not codes:
        return None
    code = codes[0]
    return CodedConcept(
        value=str(code.get("CodeValue", "") or ""),
        scheme=str(code.get("CodingSchemeDesignator", "") or ""),
        meaning=str(code.get("CodeMeaning", "") or ""),
    )


def _numeric(item: Dataset) -> NumericValue | None:
    measured = item.get("MeasuredValueSequence")
    if not measured:
        return None
    number = measured[0].get("NumericValue")
    if number is None:
        return None
    return NumericValue(str(number), _first_code(measured[0], "MeasurementUnitsCodeSequence"))


def code_dataset(concept: CodedConcept) -> Dataset:
    """Render a code triple as a code sequence item."""
    code = Dataset()
    code.CodeValue = concept.value
    code.CodingSchemeDesignator = concept.scheme
    code.CodeMeaning = concept.meaning
    return code


# =============================================================================
# Traversal
# =============================================================================


def child_path(parent_path: str, index: int) -> str:
    """Path of the ``index``-th child below ``parent_path``."""
    segment = f"ContentSequence[{index}]"
    return f"{parent_path}/{segment}" if parent_path else segment


def walk(node: SRContentNode, path: str = "") -> Iterator[tuple[str, SRContentNode]]:
    """Depth-first, pre-order traversal yielding (path, node) pairs.

    The root is yielded with an empty path.
    """
    yield path, node
    for index, child in enumerate(node.children):
        yield from walk(child, child_path(path, index))


def iter_references(
    node: SRContentNode,
) -> Iterator[tuple[str, SRContentNode, SOPReference]]:
    """Yield (path, item, reference) for every SOP reference in the subtree."""
    for path, item in walk(node):
        for ref in item.references:
            yield path, item, ref


def find_first(
    node: SRContentNode, predicate: Callable[[SRContentNode], bool]
) -> SRContentNode | None:
    """First node in depth-first order satisfying ``predicate``."""
    for _, item in walk(node):
        if predicate(item):
            return item
    return None


def find_by_concept(node: SRContentNode, concept: CodedConcept) -> SRContentNode | None:
    """First node in the subtree whose concept name matches ``concept``."""
    return find_first(node, lambda item: item.has_concept(concept))


def has_reference(node: SRContentNode) -> bool:
    """True when any IMAGE/COMPOSITE/WAVEFORM item exists below ``node``."""
    return find_first(node, lambda item: item.is_reference) is not None


def is_title_modifier(node: SRContentNode) -> bool:
    """HAS CONCEPT MOD CODE item naming a Document Title Modifier."""
    return (
        node.relationship_type == RelationshipType.HAS_CONCEPT_MOD
        and node.value_type == ValueType.CODE
        and node.has_concept(DOCUMENT_TITLE_MODIFIER)
    )


def title_modifier(parent: SRContentNode) -> CodedConcept | None:
    """Code of the first Document Title Modifier among the direct children."""
    for child in parent.children:
        if is_title_modifier(child) and child.code is not None:
            return child.code
    return None


@dataclass
class ContentTreeStats:
    """Counts of content items by value type."""

    by_value_type: dict[str, int] = field(default_factory=dict)
    depth: int = 0

    @classmethod
    def of(cls, node: SRContentNode) -> ContentTreeStats:
        stats = cls()
        for path, item in walk(node):
            stats.by_value_type[item.value_type] = (
                stats.by_value_type.get(item.value_type, 0) + 1
            )
            stats.depth = max(stats.depth, path.count("ContentSequence"))
        return stats
