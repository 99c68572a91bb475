import pytest

from core.exceptions import (
    BarCacheError,
    CacheKeyError,
    ComputeError,
    SeriesDecodeError,
    SeriesNotFoundError,
    SharedStoreError,
    SharedStoreUnavailableError,
)


def test_to_dict_carries_code_and_details() -> None:
    err = CacheKeyError("owner_id must not be blank", details={"owner_id": ""})

    data = err.to_dict()

    assert data["error_type"] == "CacheKeyError"
    assert data["error"] == "CacheKeyError"
    assert data["details"] == {"owner_id": ""}
    assert "timestamp" in data


def test_str_includes_custom_code_and_details() -> None:
    err = BarCacheError("boom", code="E42", details={"k": 1})
    assert str(err) == "[E42] boom (details: {'k': 1})"
    assert repr(err).startswith("BarCacheError(message='boom'")


def test_shared_store_hierarchy() -> None:
    for cls in (SharedStoreUnavailableError, SeriesNotFoundError, SeriesDecodeError):
        assert issubclass(cls, SharedStoreError)
        assert issubclass(cls, BarCacheError)


def test_compute_error_chains_cause() -> None:
    with pytest.raises(ComputeError) as info:
        try:
            raise ZeroDivisionError("x")
        except ZeroDivisionError as e:
            raise ComputeError("compute failed") from e
    assert isinstance(info.value.__cause__, ZeroDivisionError)
