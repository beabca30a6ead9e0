from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, JSON, Boolean, Date, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
import pytz
from material_store.db.session import Base
from material_store.core.config import settings
import enum

LOCAL_TZ = pytz.timezone(settings.TIMEZONE)

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB, "postgresql")

def now_local():
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)

# ============================================================
# ENUMS
# ============================================================

class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    VIEWER = "VIEWER"

class TransactionType(str, enum.Enum):
    CASH = "CASH"
    BON = "BON"            # deferred / credit payment
    ANGGARAN = "ANGGARAN"  # issued against an institutional budget

class TransactionStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"

class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"

class MovementType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    OPNAME = "OPNAME"

class ReferenceType(str, enum.Enum):
    PO = "PO"
    TRANSACTION = "TRANSACTION"
    MANUAL = "MANUAL"
    OPNAME = "OPNAME"

class OpnameStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"

class ProjectStatus(str, enum.Enum):
    PLANNING = "PLANNING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class NotificationType(str, enum.Enum):
    LOW_STOCK = "LOW_STOCK"
    PO_RECEIVED = "PO_RECEIVED"
    TRANSACTION_BON = "TRANSACTION_BON"
    SYSTEM = "SYSTEM"

class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"

class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ROLLBACK = "ROLLBACK"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"

# ============================================================
# USERS & AUTH
# ============================================================

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(100))
    phone = Column(String(20))
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.VIEWER.value, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(200), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, default=False)
    created_at = Column(DateTime, default=now_local)

    user = relationship("User", back_populates="refresh_tokens")

# ============================================================
# CATALOG
# ============================================================

class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=now_local)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")
    products = relationship("Product", back_populates="category")

class Brand(Base):
    __tablename__ = "brands"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=now_local)

class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False, index=True)
    contact_name = Column(String(100))
    phone = Column(String(20), nullable=False)
    email = Column(String(100))
    address = Column(Text)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=now_local)

    purchase_orders = relationship("PurchaseOrder", back_populates="supplier")

class Unit(Base):
    """Unit of measure (sak, batang, kg, ...)"""
    __tablename__ = "units"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    abbreviation = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=now_local)

class UnitLembaga(Base):
    """Institutional unit of the pesantren that draws goods from the store"""
    __tablename__ = "unit_lembaga"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), unique=True, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=now_local)

class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False, index=True)
    sku = Column(String(50), unique=True, index=True, nullable=False)
    barcode = Column(String(100), unique=True, index=True)
    description = Column(Text)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    brand_id = Column(Integer, ForeignKey("brands.id"), nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=True)
    buy_price = Column(Float, default=0.0)
    sell_price = Column(Float, default=0.0)
    stock = Column(Integer, default=0, nullable=False)
    min_stock = Column(Integer, default=0)
    max_stock = Column(Integer, nullable=True)
    image = Column(String(255))
    is_active = Column(Boolean, default=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    category = relationship("Category", back_populates="products")
    brand = relationship("Brand")
    supplier = relationship("Supplier")
    unit = relationship("Unit")
    product_units = relationship("ProductUnit", back_populates="product", cascade="all, delete-orphan")
    price_histories = relationship("PriceHistory", back_populates="product", cascade="all, delete-orphan",
                                   order_by="PriceHistory.id.desc()")
    images = relationship("ProductImage", back_populates="product", cascade="all, delete-orphan")

class ProductUnit(Base):
    """Per-product unit conversion: quantity_in_base = quantity * conversion_factor"""
    __tablename__ = "product_units"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False)
    conversion_factor = Column(Float, nullable=False, default=1.0)
    is_base_unit = Column(Boolean, default=False)

    __table_args__ = (UniqueConstraint('product_id', 'unit_id', name='uq_product_unit'),)

    product = relationship("Product", back_populates="product_units")
    unit = relationship("Unit")

class PriceHistory(Base):
    """Append-only ledger of buy/sell price changes"""
    __tablename__ = "price_histories"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    old_buy = Column(Float, nullable=False)
    new_buy = Column(Float, nullable=False)
    old_sell = Column(Float, nullable=False)
    new_sell = Column(Float, nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local, index=True)

    product = relationship("Product", back_populates="price_histories")
    user = relationship("User")

class ProductImage(Base):
    __tablename__ = "product_images"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    file_path = Column(String(255), nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String(50))
    is_primary = Column(Boolean, default=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=now_local)

    product = relationship("Product", back_populates="images")

# ============================================================
# STOCK LEDGER
# ============================================================

class StockMovement(Base):
    """Append-only ledger entry recording an inventory change and its cause"""
    __tablename__ = "stock_movements"
    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reference_type = Column(String(20), index=True)
    reference_id = Column(Integer, index=True)
    notes = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local, index=True)

    product = relationship("Product")
    creator = relationship("User")

class StockOpname(Base):
    """Physical stock count session"""
    __tablename__ = "stock_opnames"
    id = Column(Integer, primary_key=True, index=True)
    opname_number = Column(String(50), unique=True, nullable=False)
    status = Column(String(20), default=OpnameStatus.DRAFT.value, index=True)
    notes = Column(Text)
    completed_at = Column(DateTime)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local)

    items = relationship("StockOpnameItem", back_populates="opname", cascade="all, delete-orphan")

class StockOpnameItem(Base):
    __tablename__ = "stock_opname_items"
    id = Column(Integer, primary_key=True, index=True)
    stock_opname_id = Column(Integer, ForeignKey("stock_opnames.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    system_stock = Column(Integer, nullable=False)
    actual_stock = Column(Integer, nullable=False)
    difference = Column(Integer, default=0)

    opname = relationship("StockOpname", back_populates="items")
    product = relationship("Product")

# ============================================================
# PURCHASE ORDERS
# ============================================================

class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id = Column(Integer, primary_key=True, index=True)
    po_number = Column(String(50), unique=True, index=True, nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False, index=True)
    status = Column(String(20), default=PurchaseOrderStatus.DRAFT.value, index=True)
    total_amount = Column(Float, default=0.0)
    notes = Column(Text)
    order_date = Column(DateTime, default=now_local)
    received_at = Column(DateTime, index=True)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local, index=True)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    supplier = relationship("Supplier", back_populates="purchase_orders")
    items = relationship("PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan",
                         order_by="PurchaseOrderItem.id")
    creator = relationship("User", foreign_keys=[created_by])

class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    received_qty = Column(Integer, default=0)
    price = Column(Float, nullable=False)
    subtotal = Column(Float, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    product = relationship("Product")

# ============================================================
# POINT OF SALE
# ============================================================

class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True, index=True)
    transaction_number = Column(String(50), unique=True, index=True, nullable=False)
    type = Column(String(20), nullable=False, index=True)
    status = Column(String(20), default=TransactionStatus.COMPLETED.value, index=True)
    customer_name = Column(String(100))
    customer_phone = Column(String(20))
    notes = Column(Text)
    subtotal = Column(Float, default=0.0)
    discount = Column(Float, default=0.0)
    tax = Column(Float, default=0.0)
    total = Column(Float, default=0.0)
    paid_amount = Column(Float, default=0.0)
    change_amount = Column(Float, default=0.0)
    due_date = Column(Date)
    paid_at = Column(DateTime)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, index=True)
    unit_lembaga_id = Column(Integer, ForeignKey("unit_lembaga.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local, index=True)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    items = relationship("TransactionItem", back_populates="transaction", cascade="all, delete-orphan",
                         order_by="TransactionItem.id")
    project = relationship("Project", back_populates="transactions")
    unit_lembaga = relationship("UnitLembaga")
    creator = relationship("User", foreign_keys=[created_by])

class TransactionItem(Base):
    __tablename__ = "transaction_items"
    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    discount = Column(Float, default=0.0)
    subtotal = Column(Float, nullable=False)

    transaction = relationship("Transaction", back_populates="items")
    product = relationship("Product")

# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    """Construction / renovation project that consumes store materials"""
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text)
    status = Column(String(20), default=ProjectStatus.PLANNING.value, index=True)
    budget = Column(Float, default=0.0)
    spent = Column(Float, default=0.0)
    start_date = Column(Date)
    end_date = Column(Date)
    is_active = Column(Boolean, default=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime, default=now_local, onupdate=now_local)

    materials = relationship("ProjectMaterial", back_populates="project", cascade="all, delete-orphan",
                             order_by="ProjectMaterial.id")
    transactions = relationship("Transaction", back_populates="project")

class ProjectMaterial(Base):
    __tablename__ = "project_materials"
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    estimated_qty = Column(Integer, nullable=False, default=0)
    used_qty = Column(Integer, nullable=False, default=0)
    unit_price = Column(Float, default=0.0)
    notes = Column(Text)
    created_at = Column(DateTime, default=now_local)

    project = relationship("Project", back_populates="materials")
    product = relationship("Product")

# ============================================================
# NOTIFICATIONS & AUDIT
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text)
    type = Column(String(50), index=True)
    status = Column(String(20), default=NotificationStatus.PENDING.value)
    is_read = Column(Boolean, default=False, index=True)
    sent_at = Column(DateTime)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=now_local, index=True)

    user = relationship("User")

class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String(20), nullable=False, index=True)
    entity = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, index=True)
    old_data = Column(JSONType)
    new_data = Column(JSONType)
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=now_local, index=True)

    user = relationship("User")
