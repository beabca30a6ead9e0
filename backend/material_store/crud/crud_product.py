import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import asc, desc, or_
from sqlalchemy.orm import Session, joinedload
from material_store.core import barcode as barcode_utils
from material_store.core import pagination
from material_store.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from material_store.crud.crud_audit import log_audit, snapshot
from material_store.models.base import (
    AuditAction, Category, PriceHistory, Product, ProductImage, ProductUnit
)
from material_store.schemas.schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

MAX_BARCODE_ATTEMPTS = 5

# ============================================================
# BARCODES
# ============================================================

def barcode_exists(db: Session, value: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Product.id).filter(Product.barcode == value)
    if exclude_id:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def generate_unique_barcode(db: Session, code: str = "GEN") -> str:
    """Generate an internal barcode that no product uses yet."""
    for _ in range(MAX_BARCODE_ATTEMPTS):
        candidate = barcode_utils.generate_barcode(code)
        if not barcode_exists(db, candidate):
            return candidate
    raise ConflictError(f"Could not generate a unique barcode after {MAX_BARCODE_ATTEMPTS} attempts")


def _code_for(db: Session, category_id: Optional[int]) -> str:
    if not category_id:
        return "GEN"
    category = db.query(Category).filter(Category.id == category_id).first()
    return barcode_utils.category_code(category.name if category else None)


def get_by_barcode(db: Session, value: str) -> Product:
    product = db.query(Product).options(joinedload(Product.category), joinedload(Product.unit))\
        .filter(Product.barcode == value.strip(), Product.is_active.is_(True)).first()
    if not product:
        raise NotFoundError("No product found for this barcode")
    return product


def regenerate_barcode(db: Session, product_id: int, user_id: Optional[int] = None) -> Product:
    product = get_product(db, product_id)
    old_data = snapshot(product)
    product.barcode = generate_unique_barcode(db, _code_for(db, product.category_id))
    product.updated_by = user_id
    db.commit()
    db.refresh(product)
    log_audit(db, user_id, AuditAction.UPDATE.value, "products", product.id, old_data, snapshot(product))
    return product


def bulk_generate_barcodes(db: Session, product_ids: List[int], user_id: Optional[int] = None) -> Dict[str, Any]:
    """Assign barcodes to products that have none; existing barcodes are kept."""
    results = []
    for product_id in product_ids:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            results.append({"product_id": product_id, "barcode": None, "status": "error",
                            "message": "Product not found"})
            continue
        if product.barcode:
            results.append({"product_id": product_id, "barcode": product.barcode, "status": "skipped",
                            "message": "Product already has a barcode"})
            continue
        try:
            product.barcode = generate_unique_barcode(db, _code_for(db, product.category_id))
            product.updated_by = user_id
            db.commit()
        except ConflictError as e:
            db.rollback()
            results.append({"product_id": product_id, "barcode": None, "status": "error", "message": e.message})
            continue
        results.append({"product_id": product_id, "barcode": product.barcode, "status": "success",
                        "message": "Barcode generated"})

    summary = {
        "total": len(results),
        "success": sum(1 for r in results if r["status"] == "success"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "error": sum(1 for r in results if r["status"] == "error"),
    }
    logger.info("Bulk barcode generation: %s", summary)
    return {"results": results, "summary": summary}

# ============================================================
# PRODUCTS
# ============================================================

def get_products(db: Session, page: int = 1, limit: int = None, search: Optional[str] = None,
                 category_id: Optional[int] = None, brand_id: Optional[int] = None,
                 is_active: Optional[bool] = True):
    query = db.query(Product).options(
        joinedload(Product.category), joinedload(Product.brand), joinedload(Product.unit)
    )
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    if category_id: query = query.filter(Product.category_id == category_id)
    if brand_id: query = query.filter(Product.brand_id == brand_id)
    if is_active is not None: query = query.filter(Product.is_active.is_(is_active))
    return pagination.paginate(query.order_by(asc(Product.name)), page, limit)


def get_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _replace_units(db: Session, product: Product, units) -> None:
    product.product_units.clear()
    db.flush()
    for unit in units:
        product.product_units.append(ProductUnit(
            unit_id=unit.unit_id,
            conversion_factor=unit.conversion_factor,
            is_base_unit=unit.is_base_unit
        ))


def create_product(db: Session, product_in: ProductCreate, user_id: Optional[int] = None) -> Product:
    if db.query(Product.id).filter(Product.sku == product_in.sku).first():
        raise ConflictError(f'SKU "{product_in.sku}" is already used')

    data = product_in.model_dump(exclude={"units"})
    if data.get("barcode"):
        check = barcode_utils.validate_barcode(data["barcode"])
        if not check["valid"]:
            raise BusinessRuleError(check["message"])
        if barcode_exists(db, data["barcode"]):
            raise ConflictError("Barcode is already used by another product")
    else:
        data["barcode"] = generate_unique_barcode(db, _code_for(db, data.get("category_id")))

    db_product = Product(**data, created_by=user_id, updated_by=user_id)
    db.add(db_product)
    if product_in.units:
        _replace_units(db, db_product, product_in.units)
    db.commit()
    db.refresh(db_product)
    log_audit(db, user_id, AuditAction.CREATE.value, "products", db_product.id, None, snapshot(db_product))
    return db_product


def update_product(db: Session, product_id: int, product_in: ProductUpdate, user_id: Optional[int] = None) -> Product:
    db_product = get_product(db, product_id)
    update_data = product_in.model_dump(exclude_unset=True)
    units = update_data.pop("units", None)

    if update_data.get("barcode") and update_data["barcode"] != db_product.barcode:
        check = barcode_utils.validate_barcode(update_data["barcode"])
        if not check["valid"]:
            raise BusinessRuleError(check["message"])
        if barcode_exists(db, update_data["barcode"], exclude_id=product_id):
            raise ConflictError("Barcode is already used by another product")

    old_data = snapshot(db_product)
    old_buy, old_sell = db_product.buy_price, db_product.sell_price
    new_buy = update_data.get("buy_price", old_buy)
    new_sell = update_data.get("sell_price", old_sell)

    if new_buy != old_buy or new_sell != old_sell:
        db.add(PriceHistory(
            product_id=product_id,
            old_buy=old_buy, new_buy=new_buy,
            old_sell=old_sell, new_sell=new_sell,
            changed_by=user_id
        ))

    for field, value in update_data.items():
        setattr(db_product, field, value)
    if units is not None:
        _replace_units(db, db_product, product_in.units)
    db_product.updated_by = user_id

    db.commit()
    db.refresh(db_product)
    log_audit(db, user_id, AuditAction.UPDATE.value, "products", product_id, old_data, snapshot(db_product))
    return db_product


def delete_product(db: Session, product_id: int, user_id: Optional[int] = None) -> Product:
    db_product = get_product(db, product_id)
    old_data = snapshot(db_product)
    db_product.is_active = False
    db_product.updated_by = user_id
    db.commit()
    db.refresh(db_product)
    log_audit(db, user_id, AuditAction.DELETE.value, "products", product_id, old_data)
    return db_product


def get_price_history(db: Session, product_id: int, page: int = 1, limit: int = None):
    get_product(db, product_id)
    query = db.query(PriceHistory).filter(PriceHistory.product_id == product_id)\
        .order_by(desc(PriceHistory.created_at), desc(PriceHistory.id))
    return pagination.paginate(query, page, limit)

# ============================================================
# IMAGES
# ============================================================

def add_product_image(db: Session, product_id: int, file_path: str, file_size: int,
                      mime_type: str, user_id: int, is_primary: bool = False) -> ProductImage:
    product = get_product(db, product_id)
    has_primary = db.query(ProductImage.id).filter(
        ProductImage.product_id == product_id, ProductImage.is_primary.is_(True)
    ).first() is not None

    # the first image of a product always becomes the primary one
    if not has_primary:
        is_primary = True
    elif is_primary:
        db.query(ProductImage).filter(ProductImage.product_id == product_id)\
            .update({"is_primary": False}, synchronize_session=False)

    image = ProductImage(
        product_id=product_id, file_path=file_path, file_size=file_size,
        mime_type=mime_type, is_primary=is_primary, uploaded_by=user_id
    )
    db.add(image)
    if is_primary:
        product.image = file_path
    db.commit()
    db.refresh(image)
    return image


def get_product_images(db: Session, product_id: int) -> List[ProductImage]:
    get_product(db, product_id)
    return db.query(ProductImage).filter(ProductImage.product_id == product_id)\
        .order_by(desc(ProductImage.is_primary), asc(ProductImage.id)).all()
