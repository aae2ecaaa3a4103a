"""Deterministic resource identities.

Each FHIR resource produced from a manifest gets an id derived from the DICOM
identifiers that define it, so converting the same manifest twice (or
converting DICOM -> FHIR -> DICOM -> FHIR) yields the same ids. The canonical
input is the role tag followed by the normalized fields; ``None`` is replaced
by a marker that cannot occur in a DICOM string so that a missing field and an
empty one hash differently.
"""

from __future__ import annotations

import uuid

from mado_bridge.core.constants import IDENTITY_NAMESPACE
from mado_bridge.core.types import IdentityRole

# Neither control character is allowed in DICOM string VRs
NULL_MARKER = "\x00"
FIELD_SEPARATOR = "\x1f"


def canonicalize(role: IdentityRole | str, inputs: tuple[str | None, ...]) -> str:
    """Build the canonical string hashed for an identity.

    Args:
        role: Resource role tag
        inputs: Ordered identifying fields, ``None`` for absent ones

    Returns:
        Role-tagged, separator-joined string of normalized fields

    """
    role_tag = role.value if isinstance(role, IdentityRole) else str(role)
    fields = [NULL_MARKER if value is None else str(value).strip() for value in inputs]
    return FIELD_SEPARATOR.join([role_tag, *fields])


class IdentityGenerator:
    """Generates resource ids, deterministically or at random.

    Example:
        >>> ids = IdentityGenerator()
        >>> ids.identity(IdentityRole.STUDY, "1.2.3") == ids.identity("study", "1.2.3")
        True

    """

    def __init__(self, deterministic: bool = True):
        self.deterministic = deterministic

    def identity(self, role: IdentityRole | str, *inputs: str | None) -> str:
        """Return the resource id for ``role`` and its identifying fields.

        Args:
            role: Resource role tag
            *inputs: Identifying DICOM fields in canonical order

        Returns:
            Lower-case UUID string

        """
        if not self.deterministic:
            return str(uuid.uuid4())
        return str(uuid.uuid5(IDENTITY_NAMESPACE, canonicalize(role, inputs)))
