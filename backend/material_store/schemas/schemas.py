from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date

# ============================================================
# SHARED
# ============================================================

class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

class MessageOut(BaseModel):
    success: bool = True
    message: str

class RefOut(BaseModel):
    """Compact reference to a related record"""
    id: int
    name: str

    class Config:
        from_attributes = True

class UserRef(BaseModel):
    id: int
    username: str
    full_name: Optional[str] = None

    class Config:
        from_attributes = True

class ProductRef(BaseModel):
    id: int
    name: str
    sku: str
    barcode: Optional[str] = None

    class Config:
        from_attributes = True

# ============================================================
# AUTH & USER SCHEMAS
# ============================================================

class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"

class TokenPayload(BaseModel):
    sub: Optional[int] = None
    role: Optional[str] = None
    exp: Optional[int] = None

class RefreshTokenIn(BaseModel):
    refresh_token: str

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3)
    email: str
    password: str = Field(..., min_length=6)
    role: str = "VIEWER"
    full_name: Optional[str] = None
    phone: Optional[str] = None

class UserUpdate(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None

class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)

class UserOut(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class UserPage(BaseModel):
    data: List[UserOut]
    pagination: PaginationMeta

# ============================================================
# CATALOG SCHEMAS
# ============================================================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2)
    description: Optional[str] = None
    parent_id: Optional[int] = None

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None

class CategoryOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool
    product_count: int = 0
    children: List["CategoryOut"] = []

    class Config:
        from_attributes = True

class BrandCreate(BaseModel):
    name: str
    description: Optional[str] = None

class BrandUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class BrandOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True

class SupplierCreate(BaseModel):
    name: str
    phone: str
    contact_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None

class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None

class SupplierOut(BaseModel):
    id: int
    name: str
    phone: str
    contact_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class SupplierPage(BaseModel):
    data: List[SupplierOut]
    pagination: PaginationMeta

class UnitCreate(BaseModel):
    name: str
    abbreviation: str

class UnitUpdate(BaseModel):
    name: Optional[str] = None
    abbreviation: Optional[str] = None
    is_active: Optional[bool] = None

class UnitOut(BaseModel):
    id: int
    name: str
    abbreviation: str
    is_active: bool

    class Config:
        from_attributes = True

class UnitLembagaCreate(BaseModel):
    name: str
    description: Optional[str] = None

class UnitLembagaUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class UnitLembagaOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True

class UnitConversionIn(BaseModel):
    quantity: float
    from_unit_id: int
    to_unit_id: int

class UnitConversionOut(BaseModel):
    product_id: int
    quantity: float
    from_unit_id: int
    to_unit_id: int
    converted_quantity: float

# ============================================================
# PRODUCT SCHEMAS
# ============================================================

class ProductUnitIn(BaseModel):
    unit_id: int
    conversion_factor: float = Field(..., gt=0)
    is_base_unit: bool = False

class ProductUnitOut(BaseModel):
    id: int
    unit_id: int
    conversion_factor: float
    is_base_unit: bool
    unit: Optional[UnitOut] = None

    class Config:
        from_attributes = True

class ProductCreate(BaseModel):
    name: str
    sku: str
    category_id: Optional[int] = None
    barcode: Optional[str] = None
    description: Optional[str] = None
    brand_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_id: Optional[int] = None
    buy_price: float = Field(0, ge=0)
    sell_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    min_stock: int = Field(0, ge=0)
    max_stock: Optional[int] = Field(None, ge=0)
    units: Optional[List[ProductUnitIn]] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    category_id: Optional[int] = None
    barcode: Optional[str] = None
    description: Optional[str] = None
    brand_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_id: Optional[int] = None
    buy_price: Optional[float] = Field(None, ge=0)
    sell_price: Optional[float] = Field(None, ge=0)
    min_stock: Optional[int] = Field(None, ge=0)
    max_stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    units: Optional[List[ProductUnitIn]] = None

class PriceHistoryOut(BaseModel):
    id: int
    product_id: int
    old_buy: float
    new_buy: float
    old_sell: float
    new_sell: float
    changed_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ProductOut(BaseModel):
    id: int
    name: str
    sku: str
    barcode: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    supplier_id: Optional[int] = None
    unit_id: Optional[int] = None
    buy_price: float
    sell_price: float
    stock: int
    min_stock: int
    max_stock: Optional[int] = None
    image: Optional[str] = None
    is_active: bool
    created_at: datetime
    category: Optional[RefOut] = None
    brand: Optional[RefOut] = None
    unit: Optional[UnitOut] = None

    class Config:
        from_attributes = True

class ProductDetailOut(ProductOut):
    product_units: List[ProductUnitOut] = []
    price_histories: List[PriceHistoryOut] = []

class ProductPage(BaseModel):
    data: List[ProductOut]
    pagination: PaginationMeta

class ProductImageOut(BaseModel):
    id: int
    product_id: int
    file_path: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    is_primary: bool
    uploaded_by: int
    created_at: datetime

    class Config:
        from_attributes = True

# ============================================================
# BARCODE SCHEMAS
# ============================================================

class BarcodeValidationOut(BaseModel):
    valid: bool
    format: Optional[str] = None
    message: str

class BulkBarcodeIn(BaseModel):
    product_ids: List[int] = Field(..., min_length=1)

class BulkBarcodeResult(BaseModel):
    product_id: int
    barcode: Optional[str] = None
    status: str
    message: str

class BulkBarcodeSummary(BaseModel):
    total: int
    success: int
    skipped: int
    error: int

class BulkBarcodeOut(BaseModel):
    results: List[BulkBarcodeResult]
    summary: BulkBarcodeSummary

# ============================================================
# STOCK SCHEMAS
# ============================================================

class StockAdjustmentIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=0)  # new absolute stock level
    unit_id: Optional[int] = None
    notes: Optional[str] = None

class StockMovementOut(BaseModel):
    id: int
    product_id: int
    type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

class StockMovementPage(BaseModel):
    data: List[StockMovementOut]
    pagination: PaginationMeta

class StockOpnameItemUpdate(BaseModel):
    actual_stock: int = Field(..., ge=0)

class StockOpnameItemOut(BaseModel):
    id: int
    product_id: int
    system_stock: int
    actual_stock: int
    difference: int
    product: Optional[ProductRef] = None

    class Config:
        from_attributes = True

class StockOpnameOut(BaseModel):
    id: int
    opname_number: str
    status: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    items: List[StockOpnameItemOut] = []

    class Config:
        from_attributes = True

class StockOpnameCompleteOut(BaseModel):
    opname: StockOpnameOut
    adjustments: List[StockMovementOut]

# ============================================================
# PURCHASE ORDER SCHEMAS
# ============================================================

class POItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)

class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    notes: Optional[str] = None
    order_date: Optional[datetime] = None
    items: List[POItemCreate] = Field(..., min_length=1)

class PurchaseOrderUpdate(BaseModel):
    supplier_id: Optional[int] = None
    notes: Optional[str] = None
    order_date: Optional[datetime] = None
    items: Optional[List[POItemCreate]] = Field(None, min_length=1)

class ReceivedItemIn(BaseModel):
    item_id: int
    received_qty: int = Field(..., ge=0)

class PurchaseOrderReceive(BaseModel):
    items: Optional[List[ReceivedItemIn]] = None

class POItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    received_qty: int
    price: float
    subtotal: float
    product: Optional[ProductRef] = None

    class Config:
        from_attributes = True

class SupplierRef(BaseModel):
    id: int
    name: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None

    class Config:
        from_attributes = True

class PurchaseOrderOut(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    status: str
    total_amount: float
    notes: Optional[str] = None
    order_date: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: datetime
    supplier: Optional[SupplierRef] = None
    items: List[POItemOut] = []

    class Config:
        from_attributes = True

class PurchaseOrderPage(BaseModel):
    data: List[PurchaseOrderOut]
    pagination: PaginationMeta

# ============================================================
# TRANSACTION (POS) SCHEMAS
# ============================================================

class TransactionItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    unit_id: Optional[int] = None

class TransactionCreate(BaseModel):
    type: str = Field(..., pattern="^(CASH|BON|ANGGARAN)$")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    discount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    paid_amount: float = Field(0, ge=0)
    due_date: Optional[date] = None
    project_id: Optional[int] = None
    unit_lembaga_id: Optional[int] = None
    items: List[TransactionItemCreate] = Field(..., min_length=1)

class BonPayment(BaseModel):
    amount: float = Field(..., gt=0)

class TransactionItemOut(BaseModel):
    id: int
    product_id: int
    unit_id: Optional[int] = None
    quantity: int
    price: float
    discount: float
    subtotal: float
    product: Optional[ProductRef] = None

    class Config:
        from_attributes = True

class TransactionOut(BaseModel):
    id: int
    transaction_number: str
    type: str
    status: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    subtotal: float
    discount: float
    tax: float
    total: float
    paid_amount: float
    change_amount: float
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    project_id: Optional[int] = None
    unit_lembaga_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime
    items: List[TransactionItemOut] = []

    class Config:
        from_attributes = True

class TransactionPage(BaseModel):
    data: List[TransactionOut]
    pagination: PaginationMeta

# ============================================================
# PROJECT SCHEMAS
# ============================================================

class ProjectMaterialCreate(BaseModel):
    product_id: int
    estimated_qty: int = Field(..., ge=0)
    unit_price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None

class MaterialUsageUpdate(BaseModel):
    used_qty: int = Field(..., ge=0)

class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    status: str = Field("PLANNING", pattern="^(PLANNING|IN_PROGRESS|COMPLETED|CANCELLED)$")
    budget: float = Field(0, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    materials: Optional[List[ProjectMaterialCreate]] = None

class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern="^(PLANNING|IN_PROGRESS|COMPLETED|CANCELLED)$")
    budget: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

class ProjectMaterialOut(BaseModel):
    id: int
    project_id: int
    product_id: int
    estimated_qty: int
    used_qty: int
    unit_price: float
    notes: Optional[str] = None
    product: Optional[ProductRef] = None

    class Config:
        from_attributes = True

class ProjectOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: str
    budget: float
    spent: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    created_at: datetime
    progress_percent: int = 0
    budget_remaining: float = 0
    materials: List[ProjectMaterialOut] = []

    class Config:
        from_attributes = True

class ProjectPage(BaseModel):
    data: List[ProjectOut]
    pagination: PaginationMeta

class ProjectSummary(BaseModel):
    budget: float
    spent: float
    budget_remaining: float
    total_estimated_cost: float
    total_used_cost: float
    total_estimated_qty: int
    total_used_qty: int
    progress_percent: int
    material_count: int
    transaction_count: int

class ProjectDetailOut(ProjectOut):
    summary: ProjectSummary

class MaterialProgress(BaseModel):
    id: int
    product: ProductRef
    estimated_qty: int
    used_qty: int
    remaining: int
    unit_price: float
    estimated_cost: float
    used_cost: float
    percent_used: int

class ProjectProgressOut(BaseModel):
    project_id: int
    project_name: str
    status: str
    budget: float
    spent: float
    budget_remaining: float
    budget_used_percent: int
    total_estimated_cost: float
    total_used_cost: float
    overall_material_percent: int
    materials: List[MaterialProgress]

class MaterialReportLine(BaseModel):
    material_id: int
    product: ProductRef
    estimated_qty: int
    used_qty: int
    remaining: int
    unit_price: float
    estimated_cost: float
    used_cost: float
    remaining_cost: float
    percent_used: int
    current_stock: int
    stock_sufficient: bool
    shortfall: int
    notes: Optional[str] = None

class InsufficientItem(BaseModel):
    product: str
    needed: int
    available: int
    shortfall: int

class MaterialReportSummary(BaseModel):
    total_items: int
    total_estimated_cost: float
    total_used_cost: float
    total_remaining_cost: float
    insufficient_stock_count: int
    insufficient_items: List[InsufficientItem]

class MaterialReportOut(BaseModel):
    project_id: int
    project_name: str
    status: str
    materials: List[MaterialReportLine]
    summary: MaterialReportSummary

# ============================================================
# REPORT SCHEMAS
# ============================================================

class StockReportItem(BaseModel):
    id: int
    name: str
    sku: str
    category: str
    brand: str
    unit: Optional[str] = None
    stock: int
    min_stock: int
    max_stock: Optional[int] = None
    buy_price: float
    sell_price: float
    stock_value: float
    is_low_stock: bool
    is_over_stock: bool

class StockReportSummary(BaseModel):
    total_items: int
    total_stock_value: float
    low_stock_count: int

class StockReportOut(BaseModel):
    items: List[StockReportItem]
    summary: StockReportSummary

class ReportPeriod(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

class PurchaseTotals(BaseModel):
    total_amount: float
    count: int

class ExpenditureByType(BaseModel):
    type: str
    label: str
    total: float

class ExpenditureByUnit(BaseModel):
    unit_lembaga_id: int
    unit_lembaga_name: str
    total: float

class OutstandingBonItem(BaseModel):
    id: int
    transaction_number: str
    customer_name: Optional[str] = None
    total: float
    paid_amount: float
    remaining: float
    due_date: Optional[date] = None
    created_at: datetime

class OutstandingBon(BaseModel):
    count: int
    total_outstanding: float
    items: List[OutstandingBonItem]

class FinancialReportOut(BaseModel):
    period: ReportPeriod
    purchases: PurchaseTotals
    expenditure_by_type: List[ExpenditureByType]
    expenditure_by_unit: List[ExpenditureByUnit]
    total_expenditure: float
    outstanding_bon: OutstandingBon

class MonthlyBucket(BaseModel):
    month: str
    label: Optional[str] = None
    total: float
    count: int

class TopProduct(BaseModel):
    rank: int
    product: ProductRef
    total_quantity: int
    total_value: float

class PeriodTotals(BaseModel):
    total: float
    count: int

class PeriodComparison(BaseModel):
    current: PeriodTotals
    previous: PeriodTotals
    change_percent: int
    direction: str

class TrendReportOut(BaseModel):
    period: ReportPeriod
    monthly_trend: List[MonthlyBucket]
    top_products: List[TopProduct]
    top_units: List[ExpenditureByUnit]
    period_comparison: PeriodComparison

class LowStockItem(BaseModel):
    id: int
    name: str
    sku: str
    stock: int
    min_stock: int

    class Config:
        from_attributes = True

class DashboardCharts(BaseModel):
    transaction_trend: List[MonthlyBucket]
    top_products: List[TopProduct]

class DashboardSummaryOut(BaseModel):
    total_products: int
    total_stock_value: float
    monthly_transaction: PeriodTotals
    low_stock_count: int
    low_stock_items: List[LowStockItem]
    active_pos: int
    active_projects: int
    charts: DashboardCharts

# ============================================================
# NOTIFICATIONS & AUDIT SCHEMAS
# ============================================================

class NotificationOut(BaseModel):
    id: int
    user_id: int
    title: str
    message: Optional[str] = None
    type: Optional[str] = None
    status: str
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class NotificationPage(BaseModel):
    data: List[NotificationOut]
    pagination: PaginationMeta

class NotificationMarkRead(BaseModel):
    notification_ids: List[int]

class LowStockCheckOut(BaseModel):
    count: int
    products: List[LowStockItem]
    notified_admins: int

class AuditLogOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    entity: str
    entity_id: Optional[int] = None
    old_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    user: Optional[UserRef] = None

    class Config:
        from_attributes = True

class AuditLogPage(BaseModel):
    data: List[AuditLogOut]
    pagination: PaginationMeta

CategoryOut.model_rebuild()
