import logging
import time

from fastapi import Request
from pymongo.errors import PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware

from utils.transaction_logger import build_log, log_transaction_sync

logger = logging.getLogger("grievance.access")

BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class TransactionLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        # set in main.py lifespan only when MONGO_URI is configured
        mongo_db = getattr(request.app.state, "mongo_sync_db", None)

        if mongo_db is not None and request.method in BODY_METHODS:
            body_bytes = await request.body()
            request.state.body = body_bytes.decode("utf-8", errors="replace") if body_bytes else None

        response = await call_next(request)
        duration = int((time.time() - start) * 1000)
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

        if mongo_db is not None:
            log = build_log(request, response.status_code, duration,
                            author=getattr(request.state, "user_email", None))
            try:
                log_transaction_sync(mongo_db, log)
            except PyMongoError as e:
                logger.error("could not insert transaction log: %s", e)

        return response
