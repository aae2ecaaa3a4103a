"""Loading, dumping and schema-checking FHIR bundle JSON.

Bundles are read into and written from the R5 models of fhir.resources, so
every bundle that passes through here has been validated resource by resource.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fhir.resources.bundle import Bundle
from pydantic import ValidationError

from mado_bridge.core.exceptions import BundleParseError, SchemaValidationError
from mado_bridge.utils.logger import get_logger

logger = get_logger(__name__)

_MAX_REPORTED_ERRORS = 20


def schema_error(error: ValidationError, message: str) -> SchemaValidationError:
    """Wrap a model validation failure with its first error locations."""
    errors = error.errors()
    return SchemaValidationError(
        f"{message} ({len(errors)} error(s))",
        error_code="SCHEMA_INVALID",
        context={
            "errors": [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in errors[:_MAX_REPORTED_ERRORS]
            ]
        },
    )


def load_bundle(source: str | Path) -> Bundle:
    """Load a bundle from a file path or a JSON string.

    Args:
        source: Path to a JSON file, or JSON text starting with ``{``

    Returns:
        Validated Bundle model

    Raises:
        BundleParseError: If the file cannot be read or is not valid JSON
        SchemaValidationError: If the JSON is not a valid FHIR Bundle

    """
    if isinstance(source, str) and source.lstrip().startswith("{"):
        text = source
        origin = "<string>"
    else:
        path = Path(source)
        origin = str(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise BundleParseError(
                f"Cannot read bundle file: {e}",
                error_code="FILE_NOT_READABLE",
                context={"file_path": origin},
            ) from e

    try:
        bundle = Bundle.model_validate_json(text)
    except ValidationError as e:
        syntax = [err for err in e.errors() if err["type"] == "json_invalid"]
        if syntax:
            raise BundleParseError(
                f"Invalid JSON: {syntax[0]['msg']}",
                error_code="INVALID_JSON",
                context={"source": origin, "error": syntax[0].get("ctx", {}).get("error")},
            ) from e
        raise schema_error(e, f"Bundle in {origin} failed FHIR schema validation") from e

    logger.debug("bundle_loaded", source=origin, entries=len(bundle.entry or []))
    return bundle


def dump_bundle(bundle: Bundle, file_path: str | Path | None = None) -> str:
    """Serialize a bundle as indented JSON, optionally writing it to a file."""
    text = bundle.model_dump_json(indent=2)
    if file_path is not None:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text + "\n", encoding="utf-8")
        logger.debug("bundle_written", file=str(path))
    return text


def validate_bundle_schema(bundle: dict[str, Any] | Bundle) -> Bundle:
    """Check bundle JSON data against the FHIR resource models.

    Selections are emitted as Basic resources, so the whole bundle validates
    with the R5 models shipped by fhir.resources.

    Returns:
        The validated Bundle model

    Raises:
        SchemaValidationError: If any resource fails model validation

    """
    if isinstance(bundle, Bundle):
        return bundle
    try:
        model = Bundle.model_validate(bundle)
    except ValidationError as e:
        raise schema_error(e, "Bundle failed FHIR schema validation") from e
    logger.debug("bundle_schema_valid", entries=len(model.entry or []))
    return model
