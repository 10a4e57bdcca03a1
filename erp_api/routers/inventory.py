"""
Product catalogue and stock levels.

GET/POST  /inventory/products
PATCH     /inventory/products/{product_id}
POST      /inventory/products/{product_id}/adjust
GET       /inventory/summary
GET       /inventory/low-stock
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from erp_api.core.cache import cache
from erp_api.core.database import Database, build_update
from erp_api.core.errors import NotFoundError, ValidationError
from erp_api.core.logging import get_logger
from erp_api.core.models import money

log = get_logger(__name__)
router = APIRouter()

PRODUCT_FIELDS = {"sku", "name", "category", "supplier_id", "cost", "price", "reorder_level", "is_active"}

LOW_STOCK_SQL = """
    SELECT p.id, p.sku, p.name, p.category, p.quantity, p.reorder_level, p.cost,
           s.name AS supplier_name
    FROM products p
    LEFT JOIN suppliers s ON s.id = p.supplier_id
    WHERE p.is_active AND p.quantity <= p.reorder_level
    ORDER BY p.quantity - p.reorder_level, p.name
"""


class ProductCreate(BaseModel):
    sku: str | None = None
    name: str
    category: str | None = None
    supplier_id: int | None = None
    cost: float = Field(default=0, ge=0)
    price: float = Field(default=0, ge=0)
    quantity: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    sku: str | None = None
    name: str | None = None
    category: str | None = None
    supplier_id: int | None = None
    cost: float | None = Field(default=None, ge=0)
    price: float | None = Field(default=None, ge=0)
    reorder_level: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class StockAdjustment(BaseModel):
    quantity_change: int
    reason: str = "manual"
    reference: str | None = None


@router.get("/inventory/products")
def list_products(
    search: str | None = None,
    category: str | None = None,
    include_inactive: bool = False,
    limit: int = Query(default=200, le=1000),
    offset: int = 0,
):
    db = Database()
    rows = db.fetch_all(
        """
        SELECT p.*, s.name AS supplier_name, p.quantity <= p.reorder_level AS is_low_stock
        FROM products p
        LEFT JOIN suppliers s ON s.id = p.supplier_id
        WHERE (%(pattern)s::text IS NULL OR p.name ILIKE %(pattern)s OR p.sku ILIKE %(pattern)s)
          AND (%(category)s::text IS NULL OR p.category = %(category)s)
          AND (%(all)s OR p.is_active)
        ORDER BY p.name
        LIMIT %(limit)s OFFSET %(offset)s
        """,
        {
            "pattern": f"%{search}%" if search else None,
            "category": category,
            "all": include_inactive,
            "limit": limit,
            "offset": offset,
        },
    )
    return {"success": True, "data": rows}


@router.post("/inventory/products", status_code=201)
def create_product(request: ProductCreate):
    db = Database()
    row = db.execute(
        """
        INSERT INTO products (sku, name, category, supplier_id, cost, price, quantity, reorder_level)
        VALUES (%(sku)s, %(name)s, %(category)s, %(supplier_id)s, %(cost)s, %(price)s,
                %(quantity)s, %(reorder_level)s)
        RETURNING *
        """,
        request.model_dump(),
    )
    log.info("product_created", product_id=row["id"], sku=row["sku"], quantity=row["quantity"])
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": row}


@router.patch("/inventory/products/{product_id}")
def update_product(product_id: int, request: ProductUpdate):
    """Catalogue fields only; stock moves go through /adjust."""
    sql, params = build_update(
        "products",
        request.model_dump(exclude_unset=True),
        PRODUCT_FIELDS,
        touch=True,
    )
    db = Database()
    row = db.execute(sql, {**params, "id": product_id})
    if row is None:
        raise NotFoundError("Product", product_id)
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": row}


@router.post("/inventory/products/{product_id}/adjust")
def adjust_stock(product_id: int, request: StockAdjustment):
    if request.quantity_change == 0:
        raise ValidationError("quantity_change must not be zero")

    db = Database()
    with db.transaction() as conn:
        product = conn.execute(
            "SELECT id, name, quantity FROM products WHERE id = %s FOR UPDATE", (product_id,)
        ).fetchone()
        if product is None:
            raise NotFoundError("Product", product_id)
        new_quantity = product["quantity"] + request.quantity_change
        if new_quantity < 0:
            raise ValidationError(
                "Stock cannot go negative",
                details={"on_hand": product["quantity"], "quantity_change": request.quantity_change},
            )
        row = conn.execute(
            "UPDATE products SET quantity = %s, updated_at = NOW() WHERE id = %s RETURNING *",
            (new_quantity, product_id),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO stock_adjustments (product_id, quantity_change, reason, reference)
            VALUES (%s, %s, %s, %s)
            """,
            (product_id, request.quantity_change, request.reason, request.reference),
        )

    log.info(
        "stock_adjusted",
        product_id=product_id,
        quantity_change=request.quantity_change,
        quantity=new_quantity,
        reason=request.reason,
    )
    cache.invalidate_prefix("dashboard")
    return {"success": True, "data": row}


@router.get("/inventory/summary")
def inventory_summary():
    db = Database()
    totals = db.fetch_one(
        """
        SELECT COUNT(*) AS product_count,
               COALESCE(SUM(quantity), 0) AS total_units,
               COALESCE(SUM(quantity * cost), 0) AS stock_value,
               COALESCE(SUM(quantity * price), 0) AS retail_value,
               COUNT(*) FILTER (WHERE quantity = 0) AS out_of_stock
        FROM products
        WHERE is_active
        """
    )
    by_category = db.fetch_all(
        """
        SELECT COALESCE(category, 'Uncategorized') AS category,
               COUNT(*) AS product_count,
               SUM(quantity) AS units,
               SUM(quantity * cost) AS stock_value
        FROM products
        WHERE is_active
        GROUP BY 1
        ORDER BY stock_value DESC
        """
    )
    low_stock = db.fetch_all(LOW_STOCK_SQL)
    return {
        "summary": {
            "product_count": totals["product_count"],
            "total_units": totals["total_units"],
            "stock_value": money(totals["stock_value"]),
            "retail_value": money(totals["retail_value"]),
            "out_of_stock": totals["out_of_stock"],
            "low_stock_count": len(low_stock),
        },
        "by_category": [{**row, "stock_value": money(row["stock_value"])} for row in by_category],
        "low_stock": low_stock,
    }


@router.get("/inventory/low-stock")
def low_stock():
    db = Database()
    rows = db.fetch_all(LOW_STOCK_SQL)
    return {
        "success": True,
        "data": [{**row, "shortfall": max(row["reorder_level"] - row["quantity"], 0)} for row in rows],
    }
