"""
Product slug -> physical table dispatch.

Every production stage keeps one table per product. Services never build table
names into SQL; they ask ``get_model(product, key)`` for the mapped class and
compose queries against it.
"""
from __future__ import annotations

from app.kithul.models import Base

SUPPORTED_PRODUCTS = ("treacle", "jaggery")

TABLES: dict[str, dict[str, str]] = {
    "treacle": {
        "drafts": "field_collection_drafts",
        "cans": "sap_cans",
        "processingBatches": "treacle_processing_batches",
        "processingBatchCans": "treacle_processing_batch_cans",
        "packagingBatches": "treacle_packaging_batches",
        "labelingBatches": "treacle_labeling_batches",
    },
    "jaggery": {
        "drafts": "field_collection_drafts",
        "cans": "treacle_cans",
        "processingBatches": "jaggery_processing_batches",
        "processingBatchCans": "jaggery_processing_batch_cans",
        "packagingBatches": "jaggery_packaging_batches",
        "labelingBatches": "jaggery_labeling_batches",
    },
}

# Field collectors record what is in the can; production names what it becomes.
CAN_TYPE_TO_PRODUCT = {"sap": "treacle", "treacle": "jaggery"}
PRODUCT_TO_CAN_TYPE = {v: k for k, v in CAN_TYPE_TO_PRODUCT.items()}
CAN_ID_PREFIXES = {"sap": "SAP", "treacle": "TCL"}

_model_cache: dict[str, type] = {}


def normalize_product(value) -> str | None:
    if not isinstance(value, str):
        return None
    slug = value.strip().lower()
    return slug if slug in SUPPORTED_PRODUCTS else None


def normalize_can_type(value) -> str | None:
    if not isinstance(value, str):
        return None
    slug = value.strip().lower()
    return slug if slug in CAN_TYPE_TO_PRODUCT else None


def product_for_can_type(can_type: str) -> str:
    return CAN_TYPE_TO_PRODUCT[can_type]


def can_type_for_product(product: str) -> str:
    return PRODUCT_TO_CAN_TYPE[product]


def get_table_name(product: str, key: str) -> str:
    tables = TABLES.get(product)
    if tables is None:
        raise ValueError(f"Unsupported product: {product}")
    try:
        return tables[key]
    except KeyError:
        raise ValueError(f"Unknown table key: {key}") from None


def get_model(product: str, key: str) -> type:
    table_name = get_table_name(product, key)
    cls = _model_cache.get(table_name)
    if cls is None:
        for mapper in Base.registry.mappers:
            if mapper.local_table.name == table_name:
                cls = mapper.class_
                break
        if cls is None:
            raise LookupError(f"No mapped class for table {table_name}")
        _model_cache[table_name] = cls
    return cls


def products_or_all(value) -> list[str]:
    """Products named by an optional ``productType`` filter; all products when absent."""
    product = normalize_product(value)
    return [product] if product else list(SUPPORTED_PRODUCTS)
