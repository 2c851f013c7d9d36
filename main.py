import os
import re
import math
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple

import stripe
from bson import ObjectId
from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import (
    NotFound,
    close_client,
    create_document,
    ensure_indexes,
    get_client,
    get_db,
    get_documents,
    insert_result,
    normalize_email,
    serialize,
    to_object_id,
)
from schemas import (
    Booking,
    FitnessClass,
    ForumPost,
    Review,
    Role,
    Slot,
    Subscriber,
    Trainer,
    TrainerRef,
    TrainerStatus,
    User,
    Votes,
)
from security import issue_token, verify_admin, verify_token, verify_trainer

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fittrack")

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"
FEATURED_LIMIT = 6
DEFAULT_PAGE_SIZE = 6


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = get_client()
    if client is not None:
        try:
            client.admin.command("ping")
            ensure_indexes(get_db())
            logger.info("Pinged your deployment. You successfully connected to MongoDB!")
        except PyMongoError:
            logger.exception("MongoDB is not reachable")
    else:
        logger.warning("DATABASE_URL is not set; data routes will fail")
    yield
    close_client()


app = FastAPI(title="FitTrack API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1f ms", request.method, request.url.path, response.status_code, elapsed)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(PyMongoError)
async def store_error(request: Request, exc: PyMongoError):
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": str(exc)})


# ---------------------------
# Helpers
# ---------------------------

def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def paginate(db: Database, collection: str, filt: Dict[str, Any], sort: List, page: int, limit: int) -> Dict[str, Any]:
    total = db[collection].count_documents(filt)
    cursor = db[collection].find(filt).sort(sort).skip((page - 1) * limit).limit(limit)
    return {
        "items": [serialize(d) for d in cursor],
        "total": total,
        "totalPages": math.ceil(total / limit),
    }


def find_by_id(db: Database, collection: str, doc_id: str, what: str) -> Dict[str, Any]:
    doc = db[collection].find_one({"_id": to_object_id(doc_id, what)})
    if not doc:
        raise NotFound(what)
    return doc


def top_by(db: Database, collection: str, field: str) -> List[Dict[str, Any]]:
    pipeline = [{"$sort": {field: -1}}, {"$limit": FEATURED_LIMIT}]
    return [serialize(d) for d in db[collection].aggregate(pipeline)]


def booking_date(booking_id: Any) -> Optional[str]:
    if isinstance(booking_id, ObjectId):
        return booking_id.generation_time.strftime("%d/%m/%Y")
    return None


# ---------------------------
# Health & Test
# ---------------------------
@app.get("/")
def root():
    return {"message": "Hello From FitTrack Server"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if get_client() is None:
        return response
    try:
        db = get_db()
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()[:20]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but error listing collections: {str(e)[:80]}"
    return response


# ---------------------------
# Tokens
# ---------------------------
class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr
    role: Role = Role.member


@app.post("/jwt")
def create_token(body: TokenRequest):
    return {"token": issue_token(body.model_dump(mode="json"))}


# ---------------------------
# Users
# ---------------------------
class UserUpdate(BaseModel):
    name: Optional[str] = None
    image: Optional[str] = None


@app.post("/users/{email}")
def save_user(email: str, user: User, db: Database = Depends(get_db)):
    doc = user.model_dump(mode="json", exclude_none=True)
    doc["role"] = Role.member.value
    doc["timestamp"] = now_ms()
    doc["created_at"] = datetime.now(timezone.utc)
    existing = db["users"].find_one_and_update(
        {"email": doc["email"]},
        {"$setOnInsert": doc},
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    if existing:
        return serialize(existing)
    created = db["users"].find_one({"email": doc["email"]})
    return insert_result(str(created["_id"]))


@app.get("/users/role/{email}")
def get_user_role(email: str, db: Database = Depends(get_db)):
    user = db["users"].find_one({"email": normalize_email(email)}, {"role": 1})
    if not user:
        raise NotFound("User")
    return {"role": user.get("role", Role.member.value)}


@app.get("/users/{email}")
def get_user(email: str, db: Database = Depends(get_db)):
    user = db["users"].find_one({"email": normalize_email(email)})
    if not user:
        raise NotFound("User")
    return serialize(user)


@app.patch("/users/{user_id}")
def update_user(user_id: str, body: UserUpdate, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    data = body.model_dump(exclude_none=True)
    if data:
        res = db["users"].update_one({"_id": to_object_id(user_id, "User")}, {"$set": data})
        if res.matched_count == 0:
            raise NotFound("User")
    return data


# ---------------------------
# Subscribers
# ---------------------------
@app.get("/subscribers")
def list_subscribers(claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    return get_documents(db, "subscribers")


@app.post("/subscribers")
def subscribe(body: Subscriber, db: Database = Depends(get_db)):
    try:
        subscriber_id = create_document(db, "subscribers", body)
    except DuplicateKeyError:
        return {"message": "already subscribed"}
    return insert_result(subscriber_id)


# ---------------------------
# Trainers
# ---------------------------
class RejectRequest(BaseModel):
    feedback: str = ""


OPEN_APPLICATION = {"$in": [TrainerStatus.pending.value, TrainerStatus.verified.value]}


@app.get("/trainers")
def list_trainers(status: Optional[TrainerStatus] = None, db: Database = Depends(get_db)):
    filt = {"status": status.value} if status else {}
    return get_documents(db, "trainers", filt)


@app.post("/trainers")
def apply_as_trainer(body: Trainer, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    filt = {"email": body.email, "status": OPEN_APPLICATION}
    existing = db["trainers"].find_one(filt)
    if existing:
        return serialize(existing)
    application = body.model_copy(update={"status": TrainerStatus.pending, "feedback": None})
    try:
        trainer_id = create_document(db, "trainers", application)
    except DuplicateKeyError:
        return serialize(db["trainers"].find_one(filt))
    return insert_result(trainer_id)


@app.get("/trainers/{trainer_id}")
def get_trainer(trainer_id: str, db: Database = Depends(get_db)):
    return serialize(find_by_id(db, "trainers", trainer_id, "Trainer"))


@app.get("/trainer-status/{email}")
def get_trainer_status(email: str, db: Database = Depends(get_db)):
    docs = list(db["trainers"].find({"email": normalize_email(email)}).sort("_id", DESCENDING).limit(1))
    if not docs:
        raise NotFound("Application")
    return {"status": docs[0].get("status"), "feedback": docs[0].get("feedback")}


@app.get("/trainer-id/{email}")
def get_trainer_id(email: str, db: Database = Depends(get_db)):
    trainer = db["trainers"].find_one({"email": normalize_email(email), "status": TrainerStatus.verified.value}, {"_id": 1})
    if not trainer:
        raise NotFound("Trainer")
    return serialize(trainer)


def decide_application(db: Database, trainer_id: str, update: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Move a pending application to its final status; decided ones stay as they are."""
    oid = to_object_id(trainer_id, "Trainer")
    trainer = db["trainers"].find_one_and_update(
        {"_id": oid, "status": TrainerStatus.pending.value},
        {"$set": {**update, "updated_at": datetime.now(timezone.utc)}},
    )
    if trainer:
        return trainer, True
    current = db["trainers"].find_one({"_id": oid}, {"status": 1})
    if not current:
        raise NotFound("Trainer")
    return current, False


def already_decided(trainer: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": False, "status": trainer["status"], "message": f"Application already {trainer['status']}"}


@app.patch("/trainers/applicants/confirm/{trainer_id}")
def confirm_trainer(trainer_id: str, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    trainer, decided = decide_application(db, trainer_id, {"status": TrainerStatus.verified.value})
    if not decided:
        return already_decided(trainer)
    db["users"].update_one({"email": trainer["email"]}, {"$set": {"role": Role.trainer.value}})
    return {"success": True, "status": TrainerStatus.verified.value, "email": trainer["email"]}


@app.patch("/trainers/applicants/reject/{trainer_id}")
def reject_trainer(trainer_id: str, body: RejectRequest, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    update = {"status": TrainerStatus.rejected.value, "feedback": body.feedback}
    trainer, decided = decide_application(db, trainer_id, update)
    if not decided:
        return already_decided(trainer)
    return {"success": True, **update}


@app.delete("/trainers/{trainer_id}")
def delete_trainer(trainer_id: str, email: Optional[str] = None, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    trainer = find_by_id(db, "trainers", trainer_id, "Trainer")
    if email and normalize_email(email) != trainer["email"]:
        raise HTTPException(status_code=400, detail="Email does not belong to this trainer")
    email = trainer["email"]
    slots = db["slots"].delete_many({"trainerEmail": email})
    classes = db["classes"].update_many({}, {"$pull": {"trainers": {"id": trainer_id}}})
    db["users"].update_one({"email": email}, {"$set": {"role": Role.member.value}})
    res = db["trainers"].delete_one({"_id": trainer["_id"]})
    logger.info("Deleted trainer %s: %d slots, %d classes touched", email, slots.deleted_count, classes.modified_count)
    return {"acknowledged": True, "deletedCount": res.deleted_count}


# ---------------------------
# Classes
# ---------------------------
class ClassUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


CLASS_READ_ONLY = ("_id", "created_at", "updated_at", "totalBookings", "trainers")


class AddTrainerRequest(BaseModel):
    trainer: TrainerRef


@app.get("/featured-classes")
def featured_classes(db: Database = Depends(get_db)):
    return top_by(db, "classes", "totalBookings")


@app.get("/classes")
def list_classes(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    filt = {"name": {"$regex": re.escape(search), "$options": "i"}} if search else {}
    result = paginate(db, "classes", filt, [("_id", 1)], page, limit)
    return {"classes": result["items"], "totalPages": result["totalPages"], "total": result["total"]}


@app.post("/classes")
def create_class(body: FitnessClass, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    fitness_class = body.model_copy(update={"totalBookings": 0, "trainers": []})
    return insert_result(create_document(db, "classes", fitness_class))


@app.get("/classes/{class_id}")
def get_class(class_id: str, db: Database = Depends(get_db)):
    return serialize(find_by_id(db, "classes", class_id, "Class"))


@app.patch("/classes/increment-bookings/{name}")
def increment_bookings(name: str, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    res = db["classes"].update_one({"name": name}, {"$inc": {"totalBookings": 1}})
    if res.matched_count == 0:
        raise NotFound("Class")
    return {"success": True, "modifiedCount": res.modified_count}


@app.patch("/classes/{name}/details")
def edit_class(name: str, body: ClassUpdate, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    data = body.model_dump(exclude_none=True)
    # counters and trainer lists have their own routes
    for field in CLASS_READ_ONLY:
        data.pop(field, None)
    if data:
        res = db["classes"].update_one({"name": name}, {"$set": data})
        if res.matched_count == 0:
            raise NotFound("Class")
    return data


@app.patch("/classes/{name}")
def add_trainer_to_class(name: str, body: AddTrainerRequest, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    fitness_class = db["classes"].find_one({"name": name})
    if not fitness_class:
        raise NotFound("Class")
    for entry in fitness_class.get("trainers", []):
        if entry.get("id") == body.trainer.id:
            return {"success": True, "message": "Trainer already added to this class", "trainer": entry}
    trainer = body.trainer.model_dump(exclude_none=True)
    db["classes"].update_one({"_id": fitness_class["_id"]}, {"$push": {"trainers": trainer}})
    return {"success": True, "message": "Trainer added to class", "trainer": trainer}


@app.delete("/classes/{name}")
def delete_class(name: str, claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    res = db["classes"].delete_one({"name": name})
    return {"acknowledged": True, "deletedCount": res.deleted_count}


# ---------------------------
# Slots
# ---------------------------
@app.get("/slots/{email}")
def list_slots(email: str, db: Database = Depends(get_db)):
    return get_documents(db, "slots", {"trainerEmail": normalize_email(email)})


@app.get("/single-slot/{slot_id}")
def get_slot(slot_id: str, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    return serialize(find_by_id(db, "slots", slot_id, "Slot"))


@app.post("/slots")
def create_slot(body: Slot, claims: Dict[str, Any] = Depends(verify_trainer), db: Database = Depends(get_db)):
    owner = claims.get("email") or body.trainerEmail
    if not owner:
        raise HTTPException(status_code=400, detail="Slot needs a trainer email")
    slot = body.model_copy(update={"trainerEmail": normalize_email(owner)})
    return insert_result(create_document(db, "slots", slot))


@app.delete("/slots/{slot_id}")
def delete_slot(slot_id: str, claims: Dict[str, Any] = Depends(verify_trainer), db: Database = Depends(get_db)):
    res = db["slots"].delete_one({"_id": to_object_id(slot_id, "Slot")})
    return {"acknowledged": True, "deletedCount": res.deleted_count}


# ---------------------------
# Forum
# ---------------------------
class VoteRequest(BaseModel):
    type: str


class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None


@app.get("/featured-posts")
def featured_posts(db: Database = Depends(get_db)):
    return top_by(db, "forumPosts", "date")


@app.get("/forum-posts")
def list_forum_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    db: Database = Depends(get_db),
):
    result = paginate(db, "forumPosts", {}, [("date", -1), ("_id", -1)], page, limit)
    return {"posts": result["items"], "totalPages": result["totalPages"], "total": result["total"]}


@app.get("/forum-posts/{post_id}")
def get_forum_post(post_id: str, db: Database = Depends(get_db)):
    return serialize(find_by_id(db, "forumPosts", post_id, "Post"))


@app.post("/forum-posts")
def create_forum_post(body: ForumPost, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    post = body.model_copy(update={
        "votes": Votes(),
        "date": body.date or datetime.now(timezone.utc).isoformat(),
        "authorEmail": body.authorEmail or claims.get("email"),
    })
    return insert_result(create_document(db, "forumPosts", post))


@app.patch("/forum-posts/{post_id}/vote")
def vote_forum_post(post_id: str, body: VoteRequest, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    field = "votes.upvotes" if body.type == "up" else "votes.downvotes"
    res = db["forumPosts"].update_one({"_id": to_object_id(post_id, "Post")}, {"$inc": {field: 1}})
    if res.matched_count == 0:
        raise NotFound("Post")
    return {"success": True, "modifiedCount": res.modified_count}


@app.patch("/forum-posts/{post_id}")
def edit_forum_post(post_id: str, body: PostUpdate, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    data = body.model_dump(exclude_none=True)
    if data:
        res = db["forumPosts"].update_one({"_id": to_object_id(post_id, "Post")}, {"$set": data})
        if res.matched_count == 0:
            raise NotFound("Post")
    return data


# ---------------------------
# Payments & Bookings
# ---------------------------
class PaymentIntentRequest(BaseModel):
    price: float = Field(..., gt=0)
    currency: str = "usd"


@app.post("/create-payment-intent")
def create_payment_intent(body: PaymentIntentRequest, claims: Dict[str, Any] = Depends(verify_token)):
    api_key = os.getenv("STRIPE_SECRET_KEY")
    if not api_key:
        raise HTTPException(status_code=500, detail="Payment processor not configured")
    try:
        intent = stripe.PaymentIntent.create(
            api_key=api_key,
            amount=int(round(body.price * 100)),
            currency=body.currency,
            payment_method_types=["card"],
        )
    except stripe.StripeError as e:
        logger.exception("Payment intent failed for %s", claims.get("email"))
        raise HTTPException(status_code=500, detail=e.user_message or str(e))
    return {"clientSecret": intent.client_secret}


@app.post("/bookings")
def create_booking(body: Booking, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    booking = body.model_copy(update={"timestamp": now_ms()})
    return insert_result(create_document(db, "bookings", booking))


@app.get("/bookings/{email}")
def list_bookings(email: str, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    return get_documents(db, "bookings", {"userEmail": normalize_email(email)})


@app.get("/admin/overview")
def admin_overview(claims: Dict[str, Any] = Depends(verify_admin), db: Database = Depends(get_db)):
    total_subscribers = db["subscribers"].count_documents({})
    bookings = []
    for b in db["bookings"].aggregate([
        {"$sort": {"_id": -1}},
        {"$project": {"userEmail": 1, "packageName": 1, "price": 1, "paymentId": 1, "timestamp": 1}},
    ]):
        b["date"] = booking_date(b["_id"])
        bookings.append(serialize(b))
    totals = list(db["bookings"].aggregate([
        {"$group": {"_id": None, "totalBalance": {"$sum": "$price"}}},
    ]))
    total_balance = totals[0]["totalBalance"] if totals else 0
    return {"totalSubscribers": total_subscribers, "bookings": bookings, "totalBalance": total_balance}


# ---------------------------
# Reviews
# ---------------------------
@app.post("/reviews")
def create_review(body: Review, claims: Dict[str, Any] = Depends(verify_token), db: Database = Depends(get_db)):
    return insert_result(create_document(db, "reviews", body))


@app.get("/reviews")
def list_reviews(db: Database = Depends(get_db)):
    return get_documents(db, "reviews")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
