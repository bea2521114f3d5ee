import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi

from schoolmgmt.api import (
    auth, schools, users, students, academics, attendance, finance, payments, reports,
    notifications, communication,
)
from schoolmgmt.config import settings
from schoolmgmt.database import engine, Base, AsyncSessionLocal
from schoolmgmt.middleware.logging import setup_logging, add_logging_middleware
from schoolmgmt.services.auth import seed_roles

# Initialize FastAPI app
app = FastAPI(
    title="School Management API",
    description="Multi-school management API: fees and balances, Paystack payments, exams and grading, attendance and messaging",
    version="1.0.0",
    docs_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup logging
setup_logging()
add_logging_middleware(app)
logger = logging.getLogger(__name__)

_LOCATION_PREFIXES = ("body", "query", "path")
_VALUE_ERROR_PREFIX = "Value error, "

def field_errors(errors) -> dict:
    """Group validation errors by field name: ``{"class_id": ["..."]}``."""
    grouped = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        field = ".".join(loc) or "non_field_errors"

        message = str(error.get("msg", "Invalid value"))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]

        grouped.setdefault(field, []).append(message)
    return grouped

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "errors": field_errors(exc.errors())},
    )

# Custom exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )

# Create database tables and the fixed roles
@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created or verified")

    async with AsyncSessionLocal() as session:
        created = await seed_roles(session)
    if created:
        logger.info(f"Seeded {created} role(s)")

# Include routers
app.include_router(auth.router, prefix="/api", tags=["Authentication"])
app.include_router(schools.router, prefix="/api", tags=["Schools"])
app.include_router(users.router, prefix="/api", tags=["Users"])
app.include_router(students.router, prefix="/api", tags=["Students"])
app.include_router(academics.router, prefix="/api", tags=["Academics"])
app.include_router(attendance.router, prefix="/api", tags=["Attendance"])
app.include_router(finance.router, prefix="/api", tags=["Finance"])
app.include_router(payments.router, prefix="/api", tags=["Payments"])
app.include_router(reports.router, prefix="/api", tags=["Reports"])
app.include_router(notifications.router, prefix="/api", tags=["Notifications"])
app.include_router(communication.router, prefix="/api", tags=["Messages"])

# Custom OpenAPI schema for documentation
@app.get("/api/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/api/openapi.json",
        title="School Management API Documentation",
        swagger_ui_parameters={"defaultModelsExpandDepth": -1},
    )

@app.get("/api/openapi.json", include_in_schema=False)
async def get_openapi_endpoint():
    return get_openapi(
        title="School Management API",
        version="1.0.0",
        description="API for the school management system",
        routes=app.routes,
    )

@app.get("/", tags=["Root"])
async def root():
    return {"message": "Welcome to the School Management API. Visit /api/docs for documentation."}

# Run the server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("schoolmgmt.main:app", host="0.0.0.0", port=5000, reload=True)
