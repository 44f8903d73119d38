import logging
import math
import os
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr

import database
from documents import ContactDocument, UserDocument, ensure_indexes
from errors import register_exception_handlers
from schemas import Contact, User
from security import create_access_token, decode_access_token

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes()
    yield


# App setup
app = FastAPI(title="Portal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# Request models
class RegisterRequest(BaseModel):
    # optional so missing fields reach the schema rules and get their named messages
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class GoogleLoginRequest(BaseModel):
    google_id: str
    email: EmailStr
    name: Optional[str] = None
    profile_image: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    profile_image: Optional[str] = None


class AdminUserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Literal["user", "admin"]] = None
    is_active: Optional[bool] = None


class ContactRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None


class ContactUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None


class ReadStatus(BaseModel):
    is_read: bool


# Helpers

def issue_token(user: UserDocument) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})


def auth_response(user: UserDocument) -> dict:
    return {"token": issue_token(user), "user": user.to_json()}


def paginate(items, total: int, page: int, limit: int) -> dict:
    return {
        "items": [item.to_json() for item in items],
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "total_items": total,
            "items_per_page": limit,
        },
    }


def _user_from_token(token: Optional[str]) -> Optional[UserDocument]:
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    return UserDocument.find_by_id(payload["sub"])


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> UserDocument:
    user = _user_from_token(token)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[UserDocument]:
    return _user_from_token(token)


def require_admin(user: UserDocument = Depends(get_current_user)) -> UserDocument:
    if user.role != "admin":
        logger.info("User %s denied admin route", user.id)
        raise HTTPException(status_code=403, detail="Forbidden. Admin role required")
    return user


def email_taken(email: str, exclude_id=None) -> bool:
    filter_dict = {"email": email.lower()}
    if exclude_id is not None:
        filter_dict["_id"] = {"$ne": exclude_id}
    return UserDocument.count(filter_dict) > 0


def get_owned_contact(contact_id: str, user: UserDocument, action: str) -> ContactDocument:
    contact = ContactDocument.find_by_id(contact_id, recursed=True)
    if contact is None:
        raise HTTPException(status_code=404, detail="Message not found")
    if contact.user_id is None:
        raise HTTPException(status_code=403, detail=f"You cannot {action} anonymous messages")
    if contact.user_id != user.id:
        raise HTTPException(status_code=403, detail=f"You can only {action} your own messages")
    return contact


# Routes
@app.get("/")
def root():
    return {"message": "Portal Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = database.db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Schemas endpoint for viewers
@app.get("/schema")
def get_schema():
    return {
        "user": User.model_json_schema(),
        "contact": Contact.model_json_schema(),
    }


# Auth endpoints
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest):
    if not payload.password:
        raise HTTPException(status_code=400, detail="Please provide a password")
    if payload.password != payload.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    if len(payload.password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters long")
    if payload.email and email_taken(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = UserDocument(name=payload.name, email=payload.email, password=payload.password)
    user.save()
    logger.info("Registered user %s", user.id)
    return auth_response(user)


@app.post("/api/auth/login")
def login(payload: LoginRequest):
    user = UserDocument.find_one({"email": payload.email.lower()}, include_hidden=("password",))
    if not user or not user.match_password(payload.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Your account has been disabled")
    return auth_response(user)


@app.post("/api/auth/google-login")
def google_login(payload: GoogleLoginRequest):
    email = payload.email.lower()
    user = UserDocument.find_one({"$or": [{"google_id": payload.google_id}, {"email": email}]})
    if user is None:
        user = UserDocument(
            name=payload.name or email.split("@")[0],
            email=email,
            google_id=payload.google_id,
            profile_image=payload.profile_image,
            is_email_verified=True,
        )
        user.save()
        logger.info("Created Google user %s", user.id)
    elif not user.google_id:
        user.google_id = payload.google_id
        user.save()
        logger.info("Linked Google account to user %s", user.id)

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Your account has been disabled")
    return auth_response(user)


# User endpoints
@app.get("/api/users/profile")
def get_profile(current_user: UserDocument = Depends(get_current_user)):
    return {"user": current_user.to_json()}


@app.put("/api/users/profile")
def update_profile(payload: ProfileUpdate, current_user: UserDocument = Depends(get_current_user)):
    if payload.email and payload.email.lower() != current_user.email:
        if email_taken(payload.email, exclude_id=current_user.id):
            raise HTTPException(status_code=400, detail="Email is already in use")
        current_user.email = payload.email
    if payload.name:
        current_user.name = payload.name
    if "profile_image" in payload.model_fields_set:
        current_user.profile_image = payload.profile_image
    current_user.save()
    return {"user": current_user.to_json()}


@app.get("/api/users/admin")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[Literal["user", "admin"]] = None,
    is_active: Optional[bool] = None,
    _: UserDocument = Depends(require_admin),
):
    filter_dict = {}
    if role is not None:
        filter_dict["role"] = role
    if is_active is not None:
        filter_dict["is_active"] = is_active
    total = UserDocument.count(filter_dict)
    users = UserDocument.find(filter_dict, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    return paginate(users, total, page, limit)


@app.get("/api/users/{user_id}")
def get_user(user_id: str, viewer: Optional[UserDocument] = Depends(get_optional_user)):
    user = UserDocument.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if viewer is not None and (viewer.role == "admin" or viewer.id == user.id):
        return {"user": user.to_json()}
    full = user.to_json()
    return {"user": {key: full.get(key) for key in ("_id", "name", "profile_image", "role", "created_at")}}


@app.put("/api/users/{user_id}")
def admin_update_user(user_id: str, payload: AdminUserUpdate, _: UserDocument = Depends(require_admin)):
    user = UserDocument.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if payload.email and payload.email.lower() != user.email:
        if email_taken(payload.email, exclude_id=user.id):
            raise HTTPException(status_code=400, detail="Email is already in use")
        user.email = payload.email
    for name in ("name", "role", "is_active"):
        value = getattr(payload, name)
        if value is not None:
            setattr(user, name, value)
    user.save()
    return {"user": user.to_json()}


@app.delete("/api/users/{user_id}")
def deactivate_user(user_id: str, admin: UserDocument = Depends(require_admin)):
    user = UserDocument.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    user.is_active = False
    user.save()
    logger.info("Admin %s deactivated user %s", admin.id, user.id)
    return {"user": user.to_json()}


# Contact endpoints
@app.post("/api/contact", status_code=201)
def submit_contact(payload: ContactRequest, current_user: Optional[UserDocument] = Depends(get_optional_user)):
    contact = ContactDocument(
        name=payload.name,
        email=payload.email,
        message=payload.message,
        user_id=current_user.id if current_user else None,
    )
    contact.save()
    logger.info("Contact message %s submitted (user=%s)", contact.id, contact.user_id)
    return {"contact": contact.populate_user().to_json()}


@app.get("/api/contact/mymessages")
def my_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: UserDocument = Depends(get_current_user),
):
    filter_dict = {"user_id": current_user.id}
    total = ContactDocument.count(filter_dict)
    messages = ContactDocument.find(filter_dict, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    return paginate(messages, total, page, limit)


@app.get("/api/contact/admin")
def list_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_read: Optional[bool] = None,
    sort: str = "-created_at",
    _: UserDocument = Depends(require_admin),
):
    filter_dict = {}
    if is_read is not None:
        filter_dict["is_read"] = is_read
    direction = -1 if sort.startswith("-") else 1
    field = sort.lstrip("-+")
    if field not in ContactDocument.schema.model_fields and field not in ("created_at", "updated_at"):
        raise HTTPException(status_code=400, detail=f"Cannot sort by {field}")
    total = ContactDocument.count(filter_dict)
    messages = ContactDocument.find(filter_dict, sort=[(field, direction)], skip=(page - 1) * limit, limit=limit)
    return paginate(messages, total, page, limit)


@app.delete("/api/contact/admin/{contact_id}")
def admin_delete_message(contact_id: str, _: UserDocument = Depends(require_admin)):
    contact = ContactDocument.find_by_id(contact_id, recursed=True)
    if contact is None:
        raise HTTPException(status_code=404, detail="Message not found")
    contact.delete()
    return {"status": "ok"}


@app.put("/api/contact/{contact_id}")
def update_message(contact_id: str, payload: ContactUpdate, current_user: UserDocument = Depends(get_current_user)):
    contact = get_owned_contact(contact_id, current_user, "update")
    for name in ("name", "email", "message"):
        value = getattr(payload, name)
        if value:
            setattr(contact, name, value)
    contact.save()
    return {"contact": contact.populate_user().to_json()}


@app.delete("/api/contact/{contact_id}")
def delete_message(contact_id: str, current_user: UserDocument = Depends(get_current_user)):
    contact = get_owned_contact(contact_id, current_user, "delete")
    contact.delete()
    return {"status": "ok"}


@app.put("/api/contact/{contact_id}/read")
def mark_read(contact_id: str, payload: ReadStatus, _: UserDocument = Depends(require_admin)):
    contact = ContactDocument.find_by_id(contact_id, recursed=True)
    if contact is None:
        raise HTTPException(status_code=404, detail="Message not found")
    contact.is_read = payload.is_read
    contact.save()
    return {"contact": contact.populate_user().to_json()}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
