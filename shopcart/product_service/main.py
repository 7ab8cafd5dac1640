# product_service/main.py
from fastapi import FastAPI, HTTPException, Query

app = FastAPI(title="Product Service (dev mock)")


PRODUCTS = {
    "1": {"name": "Keyboard", "sku": "KB-001", "price": "199000.00", "stock": 25},
    "2": {"name": "Mouse", "sku": "MS-002", "price": "49500.00", "stock": 100},
    "3": {"name": "Monitor", "sku": "MN-003", "price": "899000.00", "stock": 5},
    "4": {"name": "Old cable", "sku": "CB-004", "price": "9000.00", "stock": 0, "is_active": False},
}


def _get(product_id: str) -> dict:
    product = PRODUCTS.get(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/products/{product_id}")
def get_product(product_id: str, variant_id: str | None = None):
    product = _get(product_id)
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "name": product["name"],
        "sku": product["sku"],
        "price": product["price"],
        "currency": "UZS",
        "is_active": product.get("is_active", True),
    }


@app.get("/products/{product_id}/availability")
def get_availability(product_id: str, quantity: int = Query(..., ge=1), variant_id: str | None = None):
    product = _get(product_id)
    stock = product["stock"]
    return {"available": stock >= quantity, "current_stock": stock}
