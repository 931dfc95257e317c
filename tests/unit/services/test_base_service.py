from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from backoffice.config import load_config
from backoffice.container import build_container
from backoffice.core.config import PipelineSettings
from backoffice.exceptions import AuditWriteWarning, NotFoundError
from backoffice.services.base_service import BaseService


class CatalogBase(DeclarativeBase):
    pass


class Product(CatalogBase):
    __tablename__ = "product"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)


class ProductService(BaseService):
    service_name = "product"

    def create(self, name: str, price: int) -> Product:
        def body() -> Product:
            product = self.persistence.save(Product(name=name, price=price))
            self.audit("product.create", "product", product.id, new_values={"name": name})
            self.clear_service_cache()
            return product

        return self.transaction(body, "create_product")

    def find(self, product_id: int) -> dict | None:
        def load() -> dict | None:
            product = self.get_entity(Product, product_id, required=False)
            return None if product is None else {"id": product.id, "name": product.name}

        return self.with_caching(self.cache_key("find", {"id": product_id}), load)


class NamelessService(BaseService):
    service_name = ""


@pytest.fixture
def container(tmp_path, cache, audit_store):
    settings = PipelineSettings(database_url=f"sqlite:///{tmp_path / 'service.db'}")
    config = load_config(settings)
    CatalogBase.metadata.create_all(config.engine)
    yield build_container(config, cache=cache, audit_store=audit_store)
    config.engine.dispose()


@pytest.fixture
def service(container) -> ProductService:
    return ProductService.from_container(container)


@pytest.mark.unit
def test_mutation_clears_service_cache_after_commit(service, container, cache) -> None:
    cache.set("product:find:stale", {"id": 0}, 60)
    cache.set("brand:find:keep", {"id": 1}, 60)

    product = service.create("Lamp", 20)

    assert cache.snapshot() == {"brand:find:keep": {"id": 1}}
    (record,) = container.audit_store.list_records(entity_type="product")
    assert record.entity_id == str(product.id)
    assert record.context["service"] == "product"
    assert record.context["transaction"] == "create_product"


@pytest.mark.unit
def test_cached_reads_use_service_scoped_keys(service, cache) -> None:
    product = service.create("Desk", 99)

    assert service.find(product.id) == {"id": product.id, "name": "Desk"}
    assert service.find(product.id) == {"id": product.id, "name": "Desk"}

    key = service.cache_key("find", {"id": product.id})
    assert key.startswith("product:find:")
    assert cache.get(key) == {"id": product.id, "name": "Desk"}
    metrics = service.performance_metrics()
    assert metrics["cache_hits"] == 1
    assert metrics["cache_misses"] == 1
    assert metrics["successful_transactions"] == 2


@pytest.mark.unit
def test_get_entity_raises_when_required(service) -> None:
    with pytest.raises(NotFoundError, match="Product '404' not found"):
        service.get_entity(Product, 404)
    assert service.get_entity(Product, 404, required=False) is None


@pytest.mark.unit
def test_batch_operation_creates_each_item_independently(service) -> None:
    result = service.batch_operation(
        [("A", 1), ("B", -1), ("C", 3)],
        lambda item, index: service.create(*item).id if item[1] > 0 else service.get_entity(Product, -1),
        chunk_size=2,
        identify=lambda item: item[0],
    )

    assert (result.succeeded, result.failed) == (2, 1)
    assert result.errors == {"B": "Product '-1' not found"}


@pytest.mark.unit
def test_health_status_reports_dependencies(service) -> None:
    health = service.health_status()

    assert health["status"] == "healthy"
    assert health["dependencies"] == {"database": True, "cache": True, "audit_store": True}
    assert health["service_name"] == "product"


@pytest.mark.unit
def test_reset_metrics_clears_transaction_and_cache_counters(service) -> None:
    service.transaction(lambda: None)
    service.with_caching("product:x", lambda: 1)

    service.reset_metrics()
    metrics = service.performance_metrics()

    assert metrics["total_transactions"] == 0
    assert metrics["cache_misses"] == 0


@pytest.mark.unit
def test_service_name_is_required(container) -> None:
    with pytest.raises(ValueError):
        NamelessService.from_container(container)


@pytest.mark.unit
def test_side_effect_warnings_point_at_the_service_caller(service, audit_store) -> None:
    audit_store.reject_actions.update({"product.create", "product.reindex"})

    with pytest.warns(AuditWriteWarning) as caught:
        service.create("Lamp", 20)
        service.audit("product.reindex", "product", 1)

    audit_warnings = [w for w in caught if issubclass(w.category, AuditWriteWarning)]
    assert len(audit_warnings) == 2
    assert {Path(w.filename).name for w in audit_warnings} == {Path(__file__).name}
