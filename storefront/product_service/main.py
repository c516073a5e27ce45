# storefront/product_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Product Catalog (dev mock)")


PRODUCTS = {
    1: {"id": 1, "name": "Keyboard", "price": "199.99"},
    2: {"id": 2, "name": "Mouse", "price": "49.50"},
    3: {"id": 3, "name": "Monitor", "price": "899.00"},
    4: {"id": 4, "name": "Cable tie", "price": "0.10"},
}


@app.get("/products/{product_id}")
def get_product(product_id: int):
    product = PRODUCTS.get(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: int):
    # lets a dev environment reproduce carts pointing at deleted products
    if PRODUCTS.pop(product_id, None) is None:
        raise HTTPException(status_code=404, detail="Product not found")
