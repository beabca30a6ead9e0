from typing import Optional
from sqlalchemy.orm import Session
from material_store.core.exceptions import NotFoundError
from material_store.core.numbers import round_half_up
from material_store.models.base import Product, ProductUnit


def _conversion(db: Session, product_id: int, unit_id: int) -> Optional[ProductUnit]:
    return db.query(ProductUnit).filter(
        ProductUnit.product_id == product_id, ProductUnit.unit_id == unit_id
    ).first()


def convert(db: Session, quantity: float, from_unit_id: int, to_unit_id: int, product_id: int) -> float:
    """Convert between two units of the same product through its base unit."""
    if from_unit_id == to_unit_id:
        return quantity

    source = _conversion(db, product_id, from_unit_id)
    if not source:
        raise NotFoundError("No conversion found for the source unit of this product")
    target = _conversion(db, product_id, to_unit_id)
    if not target:
        raise NotFoundError("No conversion found for the target unit of this product")

    base_quantity = quantity * float(source.conversion_factor)
    return base_quantity / float(target.conversion_factor)


def get_base_quantity(db: Session, quantity: float, unit_id: int, product_id: int) -> float:
    conversion = _conversion(db, product_id, unit_id)
    if not conversion:
        raise NotFoundError("No conversion found for this product unit")
    return quantity * float(conversion.conversion_factor)


def to_base_quantity(db: Session, product_id: int, unit_id: Optional[int], quantity: int) -> int:
    """Lenient variant used when moving stock: unknown units count as base units."""
    if not unit_id:
        return quantity
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product or not product.unit_id or product.unit_id == unit_id:
        return quantity
    conversion = _conversion(db, product_id, unit_id)
    if conversion:
        return round_half_up(quantity * float(conversion.conversion_factor))
    return quantity
