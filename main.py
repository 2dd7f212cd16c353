import logging
import os
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from database import db, create_document, get_documents, now_utc, serialize_doc, undo, write_batch
from errors import (
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    DuplicateRequestError,
    IllegalTransitionError,
    ScheduleConflictError,
    SkillSwapError,
    StoreUnavailableError,
)
from generation import (
    BioSuggestion,
    BioSuggestionInput,
    ConflictCheckInput,
    ConflictCheckOutput,
    SwapSummary,
    SwapSummaryInput,
    TextGenerator,
    check_schedule_conflict,
)
from scheduling import Interval, as_utc, check_conflict
from schemas import (
    ChatMessage,
    CreditTransaction,
    ScheduledSession,
    Skill,
    SkillRef,
    SwapRequest,
    UserProfile,
    UserScheduledSession,
)
from swaps import SwapStatus, duplicate_filter, is_participant, new_request_document, transition

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

COMPLETION_CREDITS = int(os.getenv("SKILLSWAP_COMPLETION_CREDITS", "10"))

app = FastAPI(title="SkillSwap API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SkillSwapError)
async def skillswap_error_handler(request: Request, exc: SkillSwapError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Document store unavailable"})

# ---------- Utility ----------

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def col(name: str):
    if db is None:
        raise StoreUnavailableError("Database is not configured")
    return db[name]


def get_user_or_404(user_id: str) -> Dict[str, Any]:
    user = col("users").find_one({"_id": oid(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return user


def get_swap_request_or_404(request_id: str) -> Dict[str, Any]:
    req = col("swap_requests").find_one({"_id": oid(request_id)})
    if not req:
        raise NotFoundError("Swap request not found")
    return req


@lru_cache
def get_generator() -> TextGenerator:
    return TextGenerator()

# ---------- Request Models ----------

class UserCreate(BaseModel):
    name: str
    email: str
    bio: str = ""
    avatar_url: Optional[str] = None
    skills_to_learn: List[SkillRef] = []
    availability: List[str] = []

class UserUpdate(BaseModel):
    bio: Optional[str] = None
    availability: Optional[List[str]] = None
    skills_to_learn: Optional[List[SkillRef]] = None

class SkillCreate(BaseModel):
    user_id: str
    name: str
    category: str
    description: str = ""
    image_url: Optional[str] = None
    image_hint: Optional[str] = None

class SwapRequestCreate(BaseModel):
    requester_id: str
    skill_id: str
    receiver_id: Optional[str] = None  # defaults to the skill owner
    message: Optional[str] = None

class ActorAction(BaseModel):
    user_id: str

class MessageCreate(BaseModel):
    sender_id: str
    text: str

class SessionCreate(BaseModel):
    swap_request_id: str
    user_id: str
    title: str
    start_time: datetime
    end_time: datetime

class SessionComplete(BaseModel):
    user_id: str
    rating: Optional[int] = Field(None, ge=1, le=5)

# ---------- Core Endpoints ----------

@app.get("/")
def read_root():
    return {"message": "SkillSwap Backend Running"}

@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response

# Users
@app.post("/api/users")
def create_or_get_user(payload: UserCreate):
    existing = col("users").find_one({"email": payload.email})
    if existing:
        return serialize_doc(existing)
    doc_id = create_document("users", UserProfile(**payload.model_dump()).model_dump())
    logger.info("Created user %s", doc_id)
    return serialize_doc(col("users").find_one({"_id": ObjectId(doc_id)}))

@app.get("/api/users")
def list_users():
    return [serialize_doc(u) for u in col("users").find()]

@app.get("/api/users/{target_id}")
def get_user(target_id: str):
    return serialize_doc(get_user_or_404(target_id))

@app.patch("/api/users/{target_id}")
def update_user(target_id: str, payload: UserUpdate, user_id: str):
    if user_id != target_id:
        raise PermissionDeniedError("Users may only edit their own profile")
    user = get_user_or_404(target_id)
    changes = payload.model_dump(exclude_none=True)
    if changes:
        changes["updated_at"] = now_utc()
        col("users").update_one({"_id": user["_id"]}, {"$set": changes})
    return serialize_doc(col("users").find_one({"_id": user["_id"]}))

# Skills
@app.post("/api/skills")
def create_skill(payload: SkillCreate):
    owner = get_user_or_404(payload.user_id)
    skill_id = create_document("skills", Skill(**payload.model_dump()).model_dump())
    col("users").update_one(
        {"_id": owner["_id"]},
        {"$push": {"skills_to_teach": {"id": skill_id, "name": payload.name}}},
    )
    logger.info("User %s now teaches %s (%s)", payload.user_id, payload.name, skill_id)
    return {"id": skill_id}

@app.get("/api/skills")
def browse_skills(category: Optional[str] = None, exclude_user_id: Optional[str] = None):
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if exclude_user_id:
        query["user_id"] = {"$ne": exclude_user_id}
    skills = [serialize_doc(s) for s in col("skills").find(query)]

    owner_ids = {s["user_id"] for s in skills if ObjectId.is_valid(s.get("user_id"))}
    owners = {
        str(u["_id"]): serialize_doc(u)
        for u in col("users").find({"_id": {"$in": [ObjectId(i) for i in owner_ids]}})
    }
    for s in skills:
        s["user"] = owners.get(s["user_id"])
    return skills

@app.get("/api/skills/{skill_id}")
def get_skill(skill_id: str):
    skill = col("skills").find_one({"_id": oid(skill_id)})
    if not skill:
        raise NotFoundError("Skill not found")
    return serialize_doc(skill)

# Swap requests
@app.post("/api/swap-requests")
def create_swap_request(payload: SwapRequestCreate):
    if payload.receiver_id is not None and payload.receiver_id == payload.requester_id:
        raise InvalidRequestError("You cannot request to swap a skill with yourself")

    skill = col("skills").find_one({"_id": oid(payload.skill_id)})
    if not skill:
        raise NotFoundError("Skill not found")
    receiver_id = payload.receiver_id or skill["user_id"]
    if receiver_id != skill["user_id"]:
        raise InvalidRequestError("Receiver does not own this skill")
    get_user_or_404(payload.requester_id)

    doc = new_request_document(payload.requester_id, receiver_id, payload.skill_id, payload.message, now_utc())

    # Read-then-write: two concurrent identical requests can both pass this
    # check. Any prior request blocks a new one, whatever its status.
    if col("swap_requests").find_one(duplicate_filter(payload.requester_id, receiver_id, payload.skill_id)):
        logger.warning("Duplicate swap request %s -> %s for skill %s", payload.requester_id, receiver_id, payload.skill_id)
        raise DuplicateRequestError("You have already sent a swap request for this skill")

    request_id = create_document("swap_requests", SwapRequest(**doc).model_dump())
    logger.info("Swap request %s created: %s -> %s", request_id, payload.requester_id, receiver_id)
    return {"id": request_id, "status": doc["status"]}

@app.get("/api/swap-requests")
def list_swap_requests(user_id: str, direction: str = Query("incoming", pattern="^(incoming|outgoing)$"), status: Optional[str] = None):
    field = "receiver_id" if direction == "incoming" else "requester_id"
    query: Dict[str, Any] = {field: user_id}
    if status:
        query["status"] = status
    enriched = []
    for r in col("swap_requests").find(query).sort("created_at", -1):
        item = serialize_doc(r)
        other_id = r["requester_id"] if direction == "incoming" else r["receiver_id"]
        other = col("users").find_one({"_id": oid(other_id)}) if ObjectId.is_valid(other_id) else None
        skill = col("skills").find_one({"_id": oid(r["skill_id"])}) if ObjectId.is_valid(r["skill_id"]) else None
        item["other"] = serialize_doc(other)
        item["skill"] = serialize_doc(skill)
        enriched.append(item)
    return enriched

@app.get("/api/swap-requests/{request_id}")
def get_swap_request(request_id: str):
    return serialize_doc(get_swap_request_or_404(request_id))

def _change_status(request_id: str, actor_id: str, new_status: SwapStatus) -> Dict[str, Any]:
    req = get_swap_request_or_404(request_id)
    update = transition(req, actor_id, new_status, now_utc())
    col("swap_requests").update_one({"_id": req["_id"]}, {"$set": update})
    logger.info("Swap request %s: %s -> %s by %s", request_id, req["status"], update["status"], actor_id)
    return serialize_doc(col("swap_requests").find_one({"_id": req["_id"]}))

@app.post("/api/swap-requests/{request_id}/accept")
def accept_swap_request(request_id: str, payload: ActorAction):
    return _change_status(request_id, payload.user_id, SwapStatus.ACCEPTED)

@app.post("/api/swap-requests/{request_id}/decline")
def decline_swap_request(request_id: str, payload: ActorAction):
    return _change_status(request_id, payload.user_id, SwapStatus.DECLINED)

@app.post("/api/swap-requests/{request_id}/cancel")
def cancel_swap_request(request_id: str, payload: ActorAction):
    return _change_status(request_id, payload.user_id, SwapStatus.CANCELLED)

# Chat
@app.get("/api/swap-requests/{request_id}/messages")
def list_messages(request_id: str, user_id: str):
    req = get_swap_request_or_404(request_id)
    if not is_participant(req, user_id):
        raise PermissionDeniedError("Only swap participants can read this chat")
    msgs = col("chat_messages").find({"swap_request_id": request_id}).sort([("timestamp", 1), ("_id", 1)])
    return [serialize_doc(m) for m in msgs]

@app.post("/api/swap-requests/{request_id}/messages")
def send_message(request_id: str, payload: MessageCreate):
    text = payload.text.strip()
    if not text:
        raise InvalidRequestError("Message text is required")
    req = get_swap_request_or_404(request_id)
    # Chat is open for any status; only participation is checked.
    if not is_participant(req, payload.sender_id):
        raise PermissionDeniedError("Only swap participants can send messages")
    doc = ChatMessage(swap_request_id=request_id, sender_id=payload.sender_id, text=text, timestamp=now_utc()).model_dump()
    col("chat_messages").insert_one(doc)
    return serialize_doc(doc)

# Sessions
def _sessions_for(user_id: str) -> List[Dict[str, Any]]:
    return list(col("user_scheduled_sessions").find({"user_id": user_id}))

@app.post("/api/sessions")
def create_session(payload: SessionCreate):
    start, end = as_utc(payload.start_time), as_utc(payload.end_time)
    if not start < end:
        raise InvalidRequestError("Session must start before it ends")
    req = get_swap_request_or_404(payload.swap_request_id)
    # Scheduling is open for any status; only participation is checked.
    if not is_participant(req, payload.user_id):
        raise PermissionDeniedError("Only swap participants can schedule sessions")
    participants = [req["requester_id"], req["receiver_id"]]

    existing: Dict[str, Interval] = {}
    for uid in participants:
        for s in _sessions_for(uid):
            existing.setdefault(s["session_id"], Interval(start=s["start_time"], end=s["end_time"], label=s["title"]))
    result = check_conflict(Interval(start=start, end=end), existing.values())
    if result.has_conflict:
        logger.info("Session for request %s rejected: %s", payload.swap_request_id, result.conflict_details)
        raise ScheduleConflictError(result.conflict_details)

    session_id = ObjectId()
    record = ScheduledSession(
        title=payload.title,
        participants=participants,
        start_time=start,
        end_time=end,
        swap_request_id=payload.swap_request_id,
    ).model_dump()
    created_at = now_utc()
    writes = [("scheduled_sessions", dict(record, _id=session_id, created_at=created_at))]
    for uid in participants:
        copy = UserScheduledSession(user_id=uid, session_id=str(session_id), **record).model_dump()
        writes.append(("user_scheduled_sessions", dict(copy, created_at=created_at)))
    write_batch(writes)
    logger.info("Session %s scheduled for %s", session_id, participants)
    return {"id": str(session_id)}

@app.get("/api/users/{target_id}/sessions")
def list_user_sessions(target_id: str, upcoming: bool = False, limit: Optional[int] = None):
    sessions = _sessions_for(target_id)
    if upcoming:
        now = now_utc()
        sessions = [s for s in sessions if as_utc(s["start_time"]) > now]
    sessions.sort(key=lambda s: as_utc(s["start_time"]))
    if limit:
        sessions = sessions[:limit]
    return [serialize_doc(s) for s in sessions]

@app.post("/api/sessions/{session_id}/complete")
def complete_session(session_id: str, payload: SessionComplete):
    s = col("scheduled_sessions").find_one({"_id": oid(session_id)})
    if not s:
        raise NotFoundError("Session not found")
    if payload.user_id not in s["participants"]:
        raise PermissionDeniedError("Only session participants can complete it")
    req = get_swap_request_or_404(s["swap_request_id"])
    if payload.rating is not None and payload.user_id != req["requester_id"]:
        raise PermissionDeniedError("Only the learner may rate the teacher")
    update = transition(req, payload.user_id, SwapStatus.COMPLETED, now_utc())

    # The receiver owns the skill and is the one teaching.
    teacher_id = req["receiver_id"]
    teacher = get_user_or_404(teacher_id)
    changes: Dict[str, Any] = {"updated_at": now_utc()}
    if payload.rating is not None:
        count = int(teacher.get("rating_count", 0))
        average = float(teacher.get("rating", 0.0))
        changes["rating_count"] = count + 1
        changes["rating"] = round((average * count + payload.rating) / (count + 1), 2)

    # Guarded on the status read above, so only one concurrent complete wins.
    flipped = col("swap_requests").update_one({"_id": req["_id"], "status": req["status"]}, {"$set": update})
    if flipped.modified_count == 0:
        raise IllegalTransitionError(f"Swap request is no longer {req['status']}")

    ledger_id = None
    try:
        ledger_id = create_document("credit_transactions", CreditTransaction(
            user_id=teacher_id,
            amount=COMPLETION_CREDITS,
            reason=f"Completed session {session_id}",
        ).model_dump())
        col("users").update_one({"_id": teacher["_id"]}, {"$inc": {"credits": COMPLETION_CREDITS}, "$set": changes})
    except PyMongoError as e:
        logger.error("Completing session %s failed, restoring request %s: %s", session_id, req["_id"], e)
        if ledger_id is not None:
            undo(col("credit_transactions").delete_one, {"_id": ObjectId(ledger_id)})
        undo(
            col("swap_requests").update_one,
            {"_id": req["_id"], "status": update["status"]},
            {"$set": {"status": req["status"], "updated_at": req["updated_at"]}},
        )
        raise
    logger.info("Session %s completed, %d credits to %s", session_id, COMPLETION_CREDITS, teacher_id)
    return {"status": update["status"], "credits_awarded": COMPLETION_CREDITS}

@app.get("/api/credits")
def get_credits(user_id: str):
    u = get_user_or_404(user_id)
    return {"balance": int(u.get("credits", 0))}

# Dashboard
@app.get("/api/dashboard")
def dashboard(user_id: str):
    me = get_user_or_404(user_id)
    pending = get_documents("swap_requests", {"receiver_id": user_id, "status": SwapStatus.PENDING.value}, limit=5)
    return {
        "profile": serialize_doc(me),
        "pending_requests": [serialize_doc(r) for r in pending],
        "upcoming_sessions": list_user_sessions(user_id, upcoming=True, limit=5),
    }

# Scheduling tool and text generation
@app.post("/api/schedule/check-conflict", response_model=ConflictCheckOutput, response_model_exclude_none=True)
def check_conflict_endpoint(payload: ConflictCheckInput):
    return check_schedule_conflict(payload)

@app.post("/api/ai/bio-suggestion", response_model=BioSuggestion)
def bio_suggestion(payload: BioSuggestionInput, generator: TextGenerator = Depends(get_generator)):
    return generator.suggest_bio(payload.skills)

@app.post("/api/ai/swap-summary", response_model=SwapSummary)
def swap_summary(payload: SwapSummaryInput, generator: TextGenerator = Depends(get_generator)):
    return generator.summarize_swap_request(**payload.model_dump())

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
