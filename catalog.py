"""Product catalog: queries, admin writes, stock reservation and demo seeding."""

import re
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, serialize_doc, to_object_id, utcnow
from errors import NotFound
from logging_config import get_logger
from schemas import Product

logger = get_logger(__name__)


def list_products(db: Database, q: Optional[str] = None, category: Optional[str] = None, limit: int = 100) -> List[dict]:
    filt = {}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filt["category"] = category
    return [serialize_doc(p) for p in get_documents(db, "product", filt, limit)]


def get_product(db: Database, product_id: str) -> dict:
    item = db["product"].find_one({"_id": to_object_id(product_id, "product id")})
    if not item:
        raise NotFound("Product not found", code="PRODUCT_NOT_FOUND")
    return item


def create_product(db: Database, product: Product) -> str:
    product_id = create_document(db, "product", product)
    logger.info("product_created", product_id=product_id)
    return product_id


def update_product(db: Database, product_id: str, changes: dict) -> None:
    changes = dict(changes)
    changes["updated_at"] = utcnow()
    res = db["product"].update_one({"_id": to_object_id(product_id, "product id")}, {"$set": changes})
    if res.matched_count == 0:
        raise NotFound("Product not found", code="PRODUCT_NOT_FOUND")


def delete_product(db: Database, product_id: str) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id, "product id")})
    if res.deleted_count == 0:
        raise NotFound("Product not found", code="PRODUCT_NOT_FOUND")
    logger.info("product_deleted", product_id=product_id)


def reserve_stock(db: Database, product_id, quantity: int) -> Optional[dict]:
    """Decrement stock only if at least ``quantity`` is available.

    Returns the updated product, or None when the stock was not sufficient.
    """
    return db["product"].find_one_and_update(
        {"_id": product_id, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def release_stock(db: Database, product_id, quantity: int) -> None:
    db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}})


DEMO_PRODUCTS = [
    Product(
        name="Canvas Weekender Bag",
        brand="Northway",
        description="Waxed canvas with leather handles.",
        price=89.0,
        category="Bags",
        images=["https://images.unsplash.com/photo-1553062407-98eeb64c6a62"],
        stock=20,
    ),
    Product(
        name="Merino Crew Sweater",
        brand="Hearth",
        description="Midweight merino knit.",
        price=64.5,
        category="Apparel",
        images=["https://images.unsplash.com/photo-1434389677669-e08b4cac3105"],
        stock=35,
    ),
    Product(
        name="Ceramic Pour-Over Set",
        brand="Kiln & Co",
        description="Dripper, carafe and two cups.",
        price=42.0,
        category="Home",
        images=["https://images.unsplash.com/photo-1495474472287-4d71bcdd2085"],
        stock=15,
    ),
    Product(
        name="Trail Running Shoes",
        brand="Ridgeline",
        description="Lightweight with a grippy outsole.",
        price=119.99,
        category="Footwear",
        images=["https://images.unsplash.com/photo-1542291026-7eec264c27ff"],
        stock=8,
    ),
]


def seed_products(db: Database) -> int:
    if db["product"].count_documents({}) > 0:
        return 0
    for product in DEMO_PRODUCTS:
        create_document(db, "product", product)
    logger.info("catalog_seeded", products=len(DEMO_PRODUCTS))
    return len(DEMO_PRODUCTS)
