import logging
import os
import shutil
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional
from uuid import uuid4

import jwt
from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

from auth import (
    JWT_ALGO,
    RefreshTokenRegistry,
    create_access_token,
    create_refresh_token,
    ensure_admin,
    get_current_user,
    get_refresh_tokens,
    hash_password,
)
from config import Settings, get_settings
from database import get_store
from errors import ServiceError
from orders import delete_order, get_order, list_orders, place_order, set_order_status
from schemas import Caller, CartRequest, Product as ProductSchema, User as UserSchema
from storage import DuplicateEmail, Store

logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ecommerce-backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    ensure_admin(get_store(), settings)
    yield


app = FastAPI(title="E-commerce Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "InvalidRequest",
            "message": "Invalid request body",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "StoreFailure", "message": "Storage unavailable"})


def public_user(user: dict) -> dict:
    return {"id": user["id"], "name": user["name"], "email": user["email"], "role": user["role"]}


def render(data):
    # Money goes out as strings, never as floats
    return jsonable_encoder(data, custom_encoder={Decimal: str})


IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp"}


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class RefreshBody(BaseModel):
    refreshToken: Optional[str] = None


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None


class StatusBody(BaseModel):
    status: Optional[str] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Welcome to backend ecommerce!"}


@app.get("/test")
def test_database(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL.startswith("mongodb") else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "store": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        info = store.status()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["store"] = info["backend"]
        response["collections"] = info["collections"]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, store: Store = Depends(get_store)):
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    user = UserSchema(
        name=body.name,
        email=body.email,
        password_hash=hash_password(body.password),
        role="customer",
    )
    try:
        created = store.create_user(user.model_dump())
    except DuplicateEmail:
        raise HTTPException(status_code=400, detail="Email already registered")
    return {"message": "Registration successful", "user": public_user(created)}


@app.post("/auth/login")
def login(
    body: LoginBody,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
    tokens: RefreshTokenRegistry = Depends(get_refresh_tokens),
):
    user = store.find_user_by_email(body.email)
    if not user or user.get("password_hash") != hash_password(body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    refresh_token = create_refresh_token(user, settings)
    tokens.add(refresh_token, datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_DAYS))
    return {
        "user": public_user(user),
        "token": create_access_token(user, settings),
        "refreshToken": refresh_token,
    }


@app.post("/auth/token")
def refresh_access_token(
    body: RefreshBody,
    settings: Settings = Depends(get_settings),
    tokens: RefreshTokenRegistry = Depends(get_refresh_tokens),
):
    if not tokens.is_active(body.refreshToken):
        raise HTTPException(status_code=403, detail="Refresh token not found, login again")
    try:
        payload = jwt.decode(body.refreshToken, settings.JWT_REFRESH_SECRET, algorithms=[JWT_ALGO])
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=403, detail="Invalid refresh token")
    return {"token": create_access_token(payload, settings)}


@app.post("/auth/logout", status_code=204)
def logout(body: RefreshBody, tokens: RefreshTokenRegistry = Depends(get_refresh_tokens)):
    tokens.revoke(body.refreshToken)
    return Response(status_code=204)


@app.get("/auth/user")
def current_user(user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    found = store.get_user(user.id)
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(found)


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(store: Store = Depends(get_store)):
    return render(store.list_products())


@app.get("/products/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    item = store.get_product(product_id)
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return render(item)


@app.post("/products", status_code=201)
def create_product(body: ProductCreateBody, user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return render(store.create_product(body.model_dump()))


@app.put("/products/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdateBody,
    user: Caller = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    update = body.model_dump(exclude_none=True)
    item = store.update_product(product_id, update)
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return render(item)


@app.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    store.deactivate_product(product_id)
    return Response(status_code=204)


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(body: CartRequest, user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    placed = place_order(store, user, body)
    return render({"message": "Order created", "id": placed.order_id, "total": placed.total})


@app.get("/orders")
def read_orders(user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    return render(list_orders(store, user))


@app.get("/orders/{order_id}")
def read_order(order_id: str, user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    return render(get_order(store, user, order_id))


@app.put("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: StatusBody,
    user: Caller = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    return render(set_order_status(store, user, order_id, body.status))


@app.delete("/orders/{order_id}", status_code=204)
def remove_order(order_id: str, user: Caller = Depends(get_current_user), store: Store = Depends(get_store)):
    delete_order(store, user, order_id)
    return Response(status_code=204)


# ----------------------- Upload -----------------------
@app.post("/upload")
def upload_image(request: Request, image: UploadFile = File(...), settings: Settings = Depends(get_settings)):
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(image.filename or "").suffix.lower()
    filename = uuid4().hex + (suffix if suffix in IMAGE_SUFFIXES else "")
    with open(upload_dir / filename, "wb") as f:
        shutil.copyfileobj(image.file, f)
    logger.info(f"Stored upload {filename}")
    return {"imageUrl": f"{request.base_url}uploads/{filename}"}


app.mount("/uploads", StaticFiles(directory=get_settings().UPLOAD_DIR, check_dir=False), name="uploads")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().PORT)
