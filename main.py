# main.py
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from db_sql import engine, SessionLocal
from Models.auth_models import Base, UserRole
import Models.complaints_models  # noqa: F401  (registers the complaint tables on Base)
from middlewares.transaction_logger_middleware import TransactionLoggerMiddleware
from services.user_admin import seed_admin
from utils.errors import register_exception_handlers
from utils.mongo_index import ensure_transaction_log_indexes

# ── Routers
from routes.auth import router as auth_router
from routes.admin import router as admin_users_router
from routes.sub_admin import router as sub_admin_users_router
from routes.complaints import owner_router, staff_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("grievance")


def _connect_mongo(app: FastAPI):
    mongo_uri = os.getenv("MONGO_URI")
    if not mongo_uri:
        logger.info("MONGO_URI not set; transaction log is written to the application log only")
        return None

    client = MongoClient(mongo_uri, serverSelectionTimeoutMS=5000)
    try:
        client.admin.command("ping")
    except PyMongoError as e:
        client.close()
        raise RuntimeError(f"MongoDB ping failed: {e}") from e

    mdb = client[os.getenv("MONGO_DB", "grievance_portal")]
    drop_mismatch = os.getenv("ALLOW_INDEX_DROP", "false").lower() == "true"
    ensure_transaction_log_indexes(mdb, drop_if_mismatch=drop_mismatch)
    app.state.mongo_sync_db = mdb
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        admin = seed_admin(db, os.getenv("ADMIN_EMAIL"), os.getenv("ADMIN_PASSWORD"), os.getenv("ADMIN_NAME"))
        if admin is None:
            logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set; no admin account seeded")
    finally:
        db.close()

    mongo_client = _connect_mongo(app)
    try:
        yield
    finally:
        if mongo_client is not None:
            mongo_client.close()


app = FastAPI(title="Grievance Portal API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=os.getenv("CORS_CREDENTIALS", "false").lower() == "true",
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TransactionLoggerMiddleware)

register_exception_handlers(app)

# Register Routers
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(staff_router(UserRole.ADMIN), prefix="/api/admin", tags=["Admin"])
app.include_router(admin_users_router, prefix="/api/admin", tags=["Admin - Users"])
app.include_router(staff_router(UserRole.SUB_ADMIN), prefix="/api/sub-admin", tags=["Sub - Admin"])
app.include_router(sub_admin_users_router, prefix="/api/sub-admin", tags=["Sub - Admin"])
app.include_router(owner_router(UserRole.STUDENT), prefix="/api/student", tags=["Student"])
app.include_router(owner_router(UserRole.EMPLOYEE), prefix="/api/employee", tags=["Employee"])


@app.get("/")
async def root():
    return {"message": "Grievance portal is running!"}


@app.get("/api/health")
async def health():
    return {"success": True, "status": "ok"}


if __name__ == "__main__":
    import uvicorn

    # reload and workers>1 are incompatible; pick ONE
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8080")), reload=True)
