"""
Sample catalog for development databases.

Run ``python seed.py [--force]`` or call ``POST /api/seed`` as an admin.
Every product references its category by the category key.
"""
import argparse
import logging

from pymongo.database import Database

from database import utcnow
from schemas import Category, Product

logger = logging.getLogger(__name__)

CATEGORIES = [
    {
        "id": "cakes",
        "name": "Cakes",
        "description": "Freshly baked celebration and everyday cakes.",
        "image": "https://images.unsplash.com/photo-1578985545062-69928b1d9587?w=400",
        "sort_order": 1,
    },
    {
        "id": "flowers",
        "name": "Flowers",
        "description": "Hand-tied bouquets and arrangements.",
        "image": "https://images.unsplash.com/photo-1487530811176-3780de880c2d?w=400",
        "sort_order": 2,
    },
    {
        "id": "personalized-gifts",
        "name": "Personalized Gifts",
        "description": "Mugs, frames and hampers made for one person.",
        "image": "https://images.unsplash.com/photo-1513201099705-a9746e1e201f?w=400",
        "sort_order": 3,
    },
    {
        "id": "plants",
        "name": "Plants",
        "description": "Low-maintenance indoor plants in gift pots.",
        "image": "https://images.unsplash.com/photo-1485955900006-10f4d324d411?w=400",
        "sort_order": 4,
    },
]

PRODUCTS = [
    {
        "name": "Classic Chocolate Birthday Cake",
        "description": "Rich, moist chocolate cake with creamy chocolate frosting.",
        "category": "cakes",
        "subcategory": "chocolate",
        "price": 899,
        "original_price": 1099,
        "images": ["https://images.unsplash.com/photo-1578985545062-69928b1d9587?w=400"],
        "rating": {"average": 4.8, "count": 156},
        "weight": "1kg",
        "servings": 8,
        "ingredients": ["Flour", "Cocoa Powder", "Sugar", "Eggs", "Butter"],
        "allergens": ["gluten", "eggs", "dairy"],
        "occasions": ["birthday"],
        "availability": {"in_stock": True, "quantity": 25, "pre_order_days": 1},
        "customization": {
            "flavors": ["Chocolate", "Vanilla"],
            "sizes": ["1kg", "1.5kg", "2kg"],
            "decorations": ["Happy Birthday", "Custom Message"],
        },
        "seo": {"keywords": ["chocolate cake", "birthday cake"]},
        "is_featured": True,
        "sort_order": 1,
    },
    {
        "name": "Eggless Red Velvet Cake",
        "description": "Velvety red sponge layered with cream cheese frosting, no eggs.",
        "category": "cakes",
        "subcategory": "red-velvet",
        "price": 749,
        "images": ["https://images.unsplash.com/photo-1586788680434-30d324b2d46f?w=400"],
        "rating": {"average": 4.5, "count": 64},
        "weight": "500g",
        "servings": 4,
        "ingredients": ["Flour", "Buttermilk", "Cocoa Powder", "Cream Cheese"],
        "allergens": ["gluten", "dairy"],
        "dietary": {"vegetarian": True, "eggless": True},
        "occasions": ["anniversary", "valentine"],
        "availability": {"in_stock": True, "quantity": 12},
        "seo": {"keywords": ["red velvet", "eggless cake"]},
        "sort_order": 2,
    },
    {
        "name": "Vegan Carrot Walnut Cake",
        "description": "Spiced carrot cake with walnuts and a cashew frosting.",
        "category": "cakes",
        "price": 1199,
        "images": ["https://images.unsplash.com/photo-1621303837174-89787a7d4729?w=400"],
        "weight": "1kg",
        "ingredients": ["Carrot", "Walnuts", "Cashew", "Whole Wheat Flour"],
        "allergens": ["nuts", "gluten"],
        "dietary": {"vegetarian": True, "vegan": True, "eggless": True},
        "occasions": ["everyday", "birthday"],
        "availability": {"in_stock": False, "quantity": 0, "pre_order_days": 2},
        "sort_order": 3,
    },
    {
        "name": "Red Roses Bouquet",
        "description": "Twelve long-stem red roses wrapped in kraft paper.",
        "category": "flowers",
        "price": 599,
        "images": ["https://images.unsplash.com/photo-1518709594023-6eab9bab7b23?w=400"],
        "weight": "500g",
        "occasions": ["valentine", "anniversary"],
        "availability": {"in_stock": True, "quantity": 40},
        "is_featured": True,
        "sort_order": 1,
    },
    {
        "name": "Photo Print Mug",
        "description": "Ceramic mug printed with your favourite photo.",
        "category": "personalized-gifts",
        "price": 349,
        "images": ["https://images.unsplash.com/photo-1514228742587-6b1558fcca3d?w=400"],
        "weight": "350g",
        "occasions": ["birthday", "everyday"],
        "availability": {"in_stock": True, "quantity": 100},
        "sort_order": 1,
    },
    {
        "name": "Money Plant in Ceramic Pot",
        "description": "Easy-care money plant in a glazed ceramic pot.",
        "category": "plants",
        "price": 449,
        "images": ["https://images.unsplash.com/photo-1459156212016-c812468e2115?w=400"],
        "weight": "1.5kg",
        "occasions": ["everyday", "diwali"],
        "availability": {"in_stock": True, "quantity": 30},
        "sort_order": 1,
    },
]


def seed_catalog(db: Database, force: bool = False) -> dict:
    count = db["product"].count_documents({})
    if count > 0 and not force:
        return {"status": "exists", "count": count}

    now = utcnow()
    categories = []
    for c in CATEGORIES:
        doc = Category(**c).model_dump()
        doc["_id"] = doc.pop("id")
        doc["created_at"] = now
        doc["updated_at"] = now
        categories.append(doc)

    # Validate with the Product schema and insert
    products = []
    for p in PRODUCTS:
        doc = Product(**p).model_dump()
        doc["created_at"] = now
        doc["updated_at"] = now
        products.append(doc)

    db["category"].delete_many({})
    db["category"].insert_many(categories)
    db["product"].delete_many({})
    db["product"].insert_many(products)
    logger.info("Seeded %d categories and %d products", len(categories), len(products))

    return {"status": "seeded", "count": len(products), "categories": len(categories)}


if __name__ == "__main__":
    from config import configure_logging, get_settings
    from database import db, ensure_indexes

    parser = argparse.ArgumentParser(description="Load the sample catalog")
    parser.add_argument("--force", action="store_true", help="replace existing products")
    args = parser.parse_args()

    configure_logging(get_settings().log_level)
    ensure_indexes(db)
    print(seed_catalog(db, force=args.force))
