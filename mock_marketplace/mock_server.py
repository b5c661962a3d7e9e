# mock_marketplace/mock_server.py
from fastapi import FastAPI, Header, Query, Body
from fastapi.responses import JSONResponse
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any
import uvicorn
import hashlib
import secrets

app = FastAPI(title="Mock Marketplace API", version="2.0")

PREFIX = "/api2.0/v1"

# Хранилище данных в памяти
products_db: Dict[str, Dict[str, Any]] = {}
orders_db: Dict[str, Dict[str, Any]] = {}
access_tokens: Dict[str, datetime] = {}
refresh_tokens: Dict[str, str] = {}
webhook_settings: Dict[str, Any] = {}
api_keys = ["test-api-key-123", "demo-marketplace-key-456"]

WAREHOUSES = [
    {"id": "WH-CN-01", "areaId": 1, "areaEn": "China Warehouse", "countryCode": "CN"},
    {"id": "WH-US-01", "areaId": 2, "areaEn": "US Warehouse", "countryCode": "US"},
]

CATEGORIES = [
    {
        "categoryFirstId": "C1",
        "categoryFirstName": "Home & Garden",
        "categoryFirstList": [
            {
                "categorySecondId": "C1-1",
                "categorySecondName": "Kitchen",
                "categorySecondList": [{"categoryId": "C1-1-1", "categoryName": "Cookware"}],
            }
        ],
    }
]

def envelope(data: Any = None, message: str = "Success", code: int = 200) -> Dict[str, Any]:
    return {
        "code": code,
        "result": code == 200,
        "message": message,
        "data": data,
        "requestId": secrets.token_hex(8),
    }

def error(status_code: int, code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(None, message=message, code=code))

def _now() -> datetime:
    return datetime.now(timezone.utc)

# Инициализация тестовых данных
def init_test_data():
    products_db.clear()
    orders_db.clear()
    access_tokens.clear()
    refresh_tokens.clear()
    webhook_settings.clear()

    for i in range(1, 21):
        pid = f"PID-{i:04d}"
        cost = round(5 + i * 1.5, 2)
        variants = []
        for n, color in enumerate(["Black", "White"], start=1):
            vid = f"{pid}-V{n}"
            variants.append({
                "vid": vid,
                "pid": pid,
                "variantNameEn": f"Test Product {i} {color}",
                "variantSku": f"SKU-{i:04d}-{n}",
                "variantSellPrice": cost,
                "variantSugSellPrice": round(cost * 2.5, 2),
                "inventories": [
                    {"countryCode": "CN", "totalInventory": 10 * n},
                    {"countryCode": "US", "totalInventory": n},
                ],
            })

        products_db[pid] = {
            "pid": pid,
            "productNameEn": f"Test Product {i}",
            "productSku": f"SKU-{i:04d}",
            "productImage": f'["https://img.example.com/{pid}-1.jpg","https://img.example.com/{pid}-2.jpg"]',
            "productWeight": 250 + i,
            "categoryName": "Cookware",
            "categoryId": "C1-1-1",
            "sellPrice": f"{cost}-{round(cost + 3, 2)}",
            "suggestSellPrice": f"{round(cost * 2.5, 2)}-{round((cost + 3) * 2.5, 2)}",
            "description": f"<p>Description of test product {i}</p>",
            "variants": variants,
        }

# Проверка токена доступа
def verify_token(token: Optional[str]) -> Optional[JSONResponse]:
    if not token:
        return error(401, 401, "CJ-Access-Token is required")
    expires_at = access_tokens.get(token)
    if expires_at is None or expires_at <= _now():
        return error(401, 401, "Invalid or expired access token")
    return None

def _issue_token() -> Dict[str, Any]:
    access_token = f"AT-{secrets.token_hex(12)}"
    refresh_token = f"RT-{secrets.token_hex(12)}"
    now = _now()
    access_tokens[access_token] = now + timedelta(days=15)
    refresh_tokens[refresh_token] = access_token
    return {
        "openId": 1001,
        "accessToken": access_token,
        "accessTokenExpiryDate": (now + timedelta(days=15)).isoformat(),
        "refreshToken": refresh_token,
        "refreshTokenExpiryDate": (now + timedelta(days=180)).isoformat(),
        "createDate": now.isoformat(),
    }

init_test_data()

# --- Тестовые ручки ---

@app.get("/health")
async def health_check():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}

@app.post("/mock/expire-tokens")
async def expire_tokens():
    """Сделать все выданные токены недействительными"""
    for token in access_tokens:
        access_tokens[token] = _now() - timedelta(seconds=1)
    return {"expired": len(access_tokens)}

@app.post("/mock/orders/{order_id}/status")
async def set_order_status(order_id: str, payload: Dict[str, Any] = Body(...)):
    order = orders_db.get(order_id)
    if not order:
        return error(404, 404, "Order not found")
    order["orderStatus"] = payload.get("status", order["orderStatus"])
    if payload.get("trackingNumber"):
        order["trackNumber"] = payload["trackingNumber"]
    return order

# --- Авторизация ---

@app.post(f"{PREFIX}/authentication/getAccessToken")
async def get_access_token(payload: Dict[str, Any] = Body(...)):
    if payload.get("apiKey") not in api_keys:
        return envelope(None, message="Invalid API key", code=1600001)
    return envelope(_issue_token())

@app.post(f"{PREFIX}/authentication/refreshAccessToken")
async def refresh_access_token(payload: Dict[str, Any] = Body(...)):
    old_access = refresh_tokens.pop(payload.get("refreshToken"), None)
    if old_access is None:
        return envelope(None, message="Invalid refresh token", code=1600003)
    access_tokens.pop(old_access, None)
    return envelope(_issue_token())

# --- Товары и каталог ---

@app.get(f"{PREFIX}/product/query")
async def query_product(
    pid: Optional[str] = Query(None),
    features: Optional[str] = Query(None),
    cj_access_token: Optional[str] = Header(None)
):
    denied = verify_token(cj_access_token)
    if denied:
        return denied

    product = products_db.get(pid or "")
    if not product:
        return envelope(None, message="Product not found", code=404)
    return envelope(product)

@app.get(f"{PREFIX}/product/listV2")
async def list_products(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    keyWord: Optional[str] = Query(None),
    categoryId: Optional[str] = Query(None),
    cj_access_token: Optional[str] = Header(None)
):
    denied = verify_token(cj_access_token)
    if denied:
        return denied

    items = list(products_db.values())
    if keyWord:
        items = [p for p in items if keyWord.lower() in p["productNameEn"].lower()]
    if categoryId:
        items = [p for p in items if p["categoryId"] == categoryId]

    # Пагинация
    start = (page - 1) * size
    paginated = [
        {
            "id": p["pid"],
            "nameEn": p["productNameEn"],
            "sku": p["productSku"],
            "sellPrice": p["sellPrice"],
            "bigImage": f"https://img.example.com/{p['pid']}-1.jpg",
            "threeCategoryName": p["categoryName"],
            "warehouseInventoryNum": sum(
                inv["totalInventory"] for v in p["variants"] for inv in v["inventories"]
            ),
        }
        for p in items[start:start + size]
    ]

    return envelope({
        "pageNumber": page,
        "pageSize": size,
        "totalRecords": len(items),
        "totalPages": -(-len(items) // size),
        "content": [{"productList": paginated}],
    })

@app.get(f"{PREFIX}/product/getCategory")
async def get_category(cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    return envelope(CATEGORIES)

# --- Остатки и склады ---

def _find_variant(vid: str) -> Optional[Dict[str, Any]]:
    for product in products_db.values():
        for variant in product["variants"]:
            if variant["vid"] == vid:
                return variant
    return None

@app.get(f"{PREFIX}/product/stock/queryByVid")
async def stock_by_vid(vid: str = Query(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    variant = _find_variant(vid)
    return envelope(variant["inventories"] if variant else [])

@app.get(f"{PREFIX}/product/stock/queryBySku")
async def stock_by_sku(sku: str = Query(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    for product in products_db.values():
        for variant in product["variants"]:
            if variant["variantSku"] == sku:
                return envelope(variant["inventories"])
    return envelope([])

@app.get(f"{PREFIX}/product/stock/getInventoryByPid")
async def inventory_by_pid(pid: str = Query(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    product = products_db.get(pid)
    if not product:
        return envelope(None, message="Product not found", code=404)
    return envelope({
        "inventories": [inv for v in product["variants"] for inv in v["inventories"]],
        "variantInventories": [
            {"vid": v["vid"], "inventory": v["inventories"]} for v in product["variants"]
        ],
    })

@app.get(f"{PREFIX}/product/globalWarehouseList")
async def warehouse_list(cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    return envelope(WAREHOUSES)

@app.get(f"{PREFIX}/warehouse/detail")
async def warehouse_detail(id: str = Query(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    warehouse = next((w for w in WAREHOUSES if w["id"] == id), None)
    return envelope(warehouse)

@app.get(f"{PREFIX}/shopping/pay/getBalance")
async def get_balance(cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    return envelope({"amount": 1250.5, "noWithdrawalAmount": 0, "freezeAmount": 35.0})

# --- Логистика ---

@app.post(f"{PREFIX}/logistics/queryFreight")
async def query_freight(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    quantity = int(payload.get("quantity") or 1)
    return envelope([
        {"logisticName": "CJPacket Ordinary", "logisticPrice": round(4.2 * quantity, 2), "logisticAging": "7-12"},
        {"logisticName": "DHL", "logisticPrice": round(18.9 * quantity, 2), "logisticAging": "3-5"},
    ])

# --- Заказы ---

@app.post(f"{PREFIX}/order/createOrder")
async def create_order(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied

    products: List[Dict[str, Any]] = payload.get("products") or []
    if not products:
        return envelope(None, message="products is required", code=1600100)
    for item in products:
        if item.get("pid") not in products_db:
            return envelope(None, message=f"Product {item.get('pid')} not found", code=404)

    order_id = hashlib.md5(f"{datetime.now().isoformat()}{secrets.token_hex(4)}".encode()).hexdigest()[:16].upper()
    order = {
        "orderId": order_id,
        "orderNumber": f"CJ{order_id[:10]}",
        "orderStatus": "CREATED",
        "shippingInfo": payload.get("shippingInfo") or {},
        "products": products,
        "remark": payload.get("remark"),
        "trackNumber": None,
        "createDate": datetime.now().isoformat(),
    }
    orders_db[order_id] = order

    return envelope({
        "orderId": order_id,
        "orderNumber": order["orderNumber"],
        "status": order["orderStatus"],
    })

@app.post(f"{PREFIX}/order/queryOrderStatus")
async def query_order_status(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    order = orders_db.get(payload.get("orderId") or "")
    if not order:
        return envelope(None, message="Order not found", code=404)
    return envelope({"orderId": order["orderId"], "status": order["orderStatus"]})

@app.post(f"{PREFIX}/order/queryOrderDetail")
async def query_order_detail(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    order = orders_db.get(payload.get("orderId") or "")
    if not order:
        return envelope(None, message="Order not found", code=404)
    return envelope(order)

@app.post(f"{PREFIX}/order/cancelOrder")
async def cancel_order(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    order = orders_db.get(payload.get("orderId") or "")
    if not order:
        return envelope(None, message="Order not found", code=404)
    if order["orderStatus"] in ("SHIPPED", "DELIVERED"):
        return envelope(None, message="Order already shipped", code=1600200)
    order["orderStatus"] = "CANCELLED"
    return envelope(True)

# --- Webhook'и ---

@app.post(f"{PREFIX}/webhook/set")
async def set_webhook(payload: Dict[str, Any] = Body(...), cj_access_token: Optional[str] = Header(None)):
    denied = verify_token(cj_access_token)
    if denied:
        return denied
    webhook_settings.clear()
    webhook_settings.update(payload)
    return envelope(True)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
