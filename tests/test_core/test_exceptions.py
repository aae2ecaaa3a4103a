"""Tests for the MADO Bridge exception hierarchy."""

import pytest

from mado_bridge.core.exceptions import (
    BundleParseError,
    InvalidBundleError,
    MadoBridgeError,
    ManifestReadError,
    SchemaValidationError,
    UnsupportedDocumentError,
)


class TestMadoBridgeError:
    def test_basic_initialization(self):
        error = MadoBridgeError("Test error message")

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.error_code is None
        assert error.context == {}

    def test_with_all_parameters(self):
        error = MadoBridgeError(
            "Bundle has no entries", error_code="EMPTY_BUNDLE", context={"entries": 0}
        )

        assert error.error_code == "EMPTY_BUNDLE"
        assert error.context == {"entries": 0}


@pytest.mark.parametrize(
    "exc_class",
    [
        UnsupportedDocumentError,
        InvalidBundleError,
        ManifestReadError,
        BundleParseError,
        SchemaValidationError,
    ],
)
def test_subclasses_share_base(exc_class):
    error = exc_class("failure", error_code="CODE")
    assert isinstance(error, MadoBridgeError)
    with pytest.raises(MadoBridgeError):
        raise error
