from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from backoffice.exceptions import (
    BusinessError,
    DatabaseOperationError,
    IntegrityConstraintViolation,
    NotFoundError,
    PipelineError,
    StorageFailureError,
    TransactionCommitError,
    ensure_found,
    handle_sqlalchemy_errors,
    translate_storage_error,
)


@pytest.mark.unit
def test_storage_and_business_errors_are_distinguishable() -> None:
    assert issubclass(TransactionCommitError, StorageFailureError)
    assert issubclass(StorageFailureError, PipelineError)
    assert not issubclass(StorageFailureError, BusinessError)
    assert issubclass(NotFoundError, BusinessError)


@pytest.mark.unit
def test_translate_storage_error_includes_entity() -> None:
    integrity = translate_storage_error(IntegrityError("INSERT", {}, Exception("dup")), entity="Product")
    operational = translate_storage_error(OperationalError("SELECT", {}, Exception("gone")))

    assert isinstance(integrity, IntegrityConstraintViolation)
    assert str(integrity) == "Product: integrity constraint violated"
    assert isinstance(operational, DatabaseOperationError)
    assert "gone" in str(operational)


@pytest.mark.unit
def test_handle_sqlalchemy_errors_chains_original() -> None:
    original = OperationalError("SELECT", {}, Exception("locked"))

    with pytest.raises(DatabaseOperationError) as excinfo:
        with handle_sqlalchemy_errors(entity="Link"):
            raise original

    assert excinfo.value.__cause__ is original


@pytest.mark.unit
def test_ensure_found() -> None:
    assert ensure_found("row", entity="Badge", identifier=3) == "row"
    with pytest.raises(NotFoundError, match="Badge '3' not found"):
        ensure_found(None, entity="Badge", identifier=3)
