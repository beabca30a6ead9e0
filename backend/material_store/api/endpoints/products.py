import os
import uuid
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session
from material_store.api import deps
from material_store.core import pagination, unit_converter
from material_store.core.barcode import validate_barcode
from material_store.core.config import settings
from material_store.core.exceptions import BusinessRuleError
from material_store.crud import crud_product
from material_store.db.session import get_db
from material_store.models.base import User
from material_store.schemas.schemas import (
    BarcodeValidationOut, BulkBarcodeIn, BulkBarcodeOut, PriceHistoryOut, ProductCreate,
    ProductDetailOut, ProductImageOut, ProductOut, ProductPage, ProductUpdate,
    UnitConversionIn, UnitConversionOut
)

router = APIRouter()

staff = deps.require_roles("ADMIN", "OPERATOR")
admin_only = deps.require_roles("ADMIN")

IMAGE_EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}


@router.get("/", response_model=ProductPage)
def list_products(
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    brand_id: Optional[int] = None,
    is_active: Optional[bool] = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_active_user)
) -> Any:
    rows, total, page, limit = crud_product.get_products(db, page, limit, search, category_id, brand_id, is_active)
    return pagination.paginated(rows, total, page, limit)


@router.post("/", response_model=ProductDetailOut, status_code=201)
def create_product(body: ProductCreate, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_product.create_product(db, body, current_user.id)

# ============================================================
# BARCODES
# ============================================================

@router.get("/barcode/validate", response_model=BarcodeValidationOut)
def check_barcode(value: str, current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return validate_barcode(value)


@router.post("/barcode/bulk-generate", response_model=BulkBarcodeOut)
def bulk_generate(body: BulkBarcodeIn, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_product.bulk_generate_barcodes(db, body.product_ids, current_user.id)


@router.get("/barcode/{value}", response_model=ProductOut)
def lookup_barcode(value: str, db: Session = Depends(get_db),
                   current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_product.get_by_barcode(db, value)

# ============================================================
# SINGLE PRODUCT
# ============================================================

@router.get("/{product_id}", response_model=ProductDetailOut)
def read_product(product_id: int, db: Session = Depends(get_db),
                 current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_product.get_product(db, product_id)


@router.put("/{product_id}", response_model=ProductDetailOut)
def update_product(product_id: int, body: ProductUpdate, db: Session = Depends(get_db),
                   current_user: User = Depends(staff)) -> Any:
    return crud_product.update_product(db, product_id, body, current_user.id)


@router.delete("/{product_id}", response_model=ProductOut)
def delete_product(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_only)) -> Any:
    return crud_product.delete_product(db, product_id, current_user.id)


@router.post("/{product_id}/barcode/regenerate", response_model=ProductOut)
def regenerate_barcode(product_id: int, db: Session = Depends(get_db), current_user: User = Depends(staff)) -> Any:
    return crud_product.regenerate_barcode(db, product_id, current_user.id)


@router.get("/{product_id}/price-history", response_model=List[PriceHistoryOut])
def price_history(product_id: int, page: int = 1, limit: int = 50, db: Session = Depends(get_db),
                  current_user: User = Depends(deps.get_current_active_user)) -> Any:
    rows, _, _, _ = crud_product.get_price_history(db, product_id, page, limit)
    return rows


@router.post("/{product_id}/convert", response_model=UnitConversionOut)
def convert_units(product_id: int, body: UnitConversionIn, db: Session = Depends(get_db),
                  current_user: User = Depends(deps.get_current_active_user)) -> Any:
    crud_product.get_product(db, product_id)
    converted = unit_converter.convert(db, body.quantity, body.from_unit_id, body.to_unit_id, product_id)
    return {**body.model_dump(), "product_id": product_id, "converted_quantity": converted}

# ============================================================
# IMAGES
# ============================================================

@router.get("/{product_id}/images", response_model=List[ProductImageOut])
def list_images(product_id: int, db: Session = Depends(get_db),
                current_user: User = Depends(deps.get_current_active_user)) -> Any:
    return crud_product.get_product_images(db, product_id)


@router.post("/{product_id}/images", response_model=ProductImageOut, status_code=201)
async def upload_image(
    product_id: int,
    is_primary: bool = False,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(staff)
) -> Any:
    if file.content_type not in settings.ALLOWED_IMAGE_TYPES:
        raise BusinessRuleError(f"Only {', '.join(settings.ALLOWED_IMAGE_TYPES)} images are allowed")

    contents = await file.read()
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise BusinessRuleError(f"File is larger than {settings.MAX_UPLOAD_SIZE // (1024 * 1024)} MB")

    crud_product.get_product(db, product_id)
    folder = os.path.join(settings.UPLOAD_DIR, "products")
    os.makedirs(folder, exist_ok=True)
    filename = f"{product_id}-{uuid.uuid4().hex}{IMAGE_EXTENSIONS.get(file.content_type, '')}"
    with open(os.path.join(folder, filename), "wb") as out:
        out.write(contents)

    return crud_product.add_product_image(
        db, product_id, f"/uploads/products/{filename}", len(contents), file.content_type,
        current_user.id, is_primary
    )
