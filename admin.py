"""Read-only admin aggregations over orders, products and users.

Every query here tolerates empty collections: sums fall back to 0 and
groupings to an empty mapping.
"""

from typing import Dict, List

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import serialize_doc
from schemas import PaymentStatus, Role


def _group_counts(db: Database, field: str) -> Dict[str, int]:
    rows = db["order"].aggregate([{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])
    return {str(row["_id"]): row["count"] for row in rows if row["_id"] is not None}


def total_revenue(db: Database) -> float:
    rows = list(
        db["order"].aggregate(
            [
                {"$match": {"payment_status": PaymentStatus.PAID.value}},
                {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
            ]
        )
    )
    return round(float(rows[0]["total"]), 2) if rows else 0


def recent_orders(db: Database, limit: int = 5) -> List[dict]:
    cursor = db["order"].find().sort("created_at", DESCENDING).limit(limit)
    return [serialize_doc(o) for o in cursor]


def order_stats(db: Database, recent_limit: int = 5) -> dict:
    return {
        "total_orders": db["order"].count_documents({}),
        "total_revenue": total_revenue(db),
        "status_counts": _group_counts(db, "status"),
        "payment_status_counts": _group_counts(db, "payment_status"),
        "recent_orders": recent_orders(db, recent_limit),
    }


def dashboard_overview(db: Database) -> dict:
    return {
        "total_orders": db["order"].count_documents({}),
        "total_products": db["product"].count_documents({}),
        "total_customers": db["user"].count_documents({"role": Role.USER.value}),
    }


def low_stock_products(db: Database, threshold: int = 10, limit: int = 5) -> List[dict]:
    cursor = db["product"].find({"stock": {"$lt": threshold}}).sort("stock", ASCENDING).limit(limit)
    return [serialize_doc(p) for p in cursor]


def admin_order_view(order: dict) -> dict:
    """Order shaped for the admin table: short order number and line totals."""
    view = serialize_doc(order)
    view["order_number"] = view["id"][-6:]
    view["customer"] = {
        "name": order.get("customer_name"),
        "email": order.get("customer_email"),
        "user_id": order.get("user"),
    }
    view["items"] = [
        {**item, "total": round(item["price"] * item["quantity"], 2)} for item in view.get("items", [])
    ]
    return view


def list_orders(db: Database) -> List[dict]:
    return [admin_order_view(o) for o in db["order"].find().sort("created_at", DESCENDING)]
