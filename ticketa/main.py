from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from ticketa.config import settings
from ticketa.logging_config import setup_logging
from ticketa.auth import router as auth_router
from ticketa.trips import router as trips_router
from ticketa.bookings import router as bookings_router
from ticketa.scanning import router as scanning_router
from ticketa.companies import router as companies_router
from ticketa.admin import router as admin_router

logger = setup_logging()

# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Bus ticket marketplace: trip search, seat booking and driver boarding scans",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    auth_router.router,
    prefix=f"{settings.API_V1_STR}/auth",
    tags=["Authentication"]
)

app.include_router(
    trips_router.router,
    prefix=f"{settings.API_V1_STR}/trips",
    tags=["Trips & Real-time"]
)

app.include_router(
    bookings_router.router,
    prefix=f"{settings.API_V1_STR}/bookings",
    tags=["Booking & Ticketing"]
)

app.include_router(
    scanning_router.router,
    prefix=f"{settings.API_V1_STR}/scanner",
    tags=["Driver Scanner"]
)

app.include_router(
    companies_router.router,
    prefix=f"{settings.API_V1_STR}/companies",
    tags=["Bus Companies"]
)

app.include_router(
    admin_router.router,
    prefix=f"{settings.API_V1_STR}/admin",
    tags=["Admin System"]
)

logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
