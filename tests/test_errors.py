"""Tests for the error taxonomy and error-log writing."""

from ryana.errors import (
    ConfirmationRequired,
    DuplicateName,
    NotFound,
    RyanaError,
    StorageUnavailable,
    ValidationError,
    log_exception,
)


def test_kinds_and_details():
    e = NotFound("subject", "s-1")
    assert e.kind == "not_found"
    assert (e.entity, e.id) == ("subject", "s-1")
    assert str(e) == "Subject not found: s-1"
    assert isinstance(e, LookupError)

    d = DuplicateName("Web")
    assert d.kind == "duplicate_name"
    assert d.name == "Web"

    v = ValidationError("bad", field="snippets[0].code")
    assert isinstance(v, ValueError)
    assert v.field == "snippets[0].code"

    assert issubclass(ConfirmationRequired, ValidationError)
    for cls in (NotFound, DuplicateName, ValidationError, StorageUnavailable):
        assert issubclass(cls, RyanaError)


def test_log_exception_writes_traceback(tmp_path, monkeypatch):
    monkeypatch.setenv("RYANA_STORE_PATH", str(tmp_path))
    try:
        raise StorageUnavailable("disk gone")
    except StorageUnavailable as e:
        path = log_exception(e, context="unit test")

    assert path == tmp_path / "ryana-errors.log"
    text = path.read_text()
    assert "unit test StorageUnavailable: disk gone" in text
    assert "Traceback" in text
