import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from otpdesk.config import settings
from otpdesk.db.database import init_db
from otpdesk.errors import ServiceError, service_error_handler
from otpdesk.routes import admin, credits, rentals, ws

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    await init_db()
    yield


app = FastAPI(
    title='OTPDesk API',
    description='Temporary numbers for SMS verification, paid from a prepaid credit balance',
    version='0.1.0',
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.add_exception_handler(ServiceError, service_error_handler)

# Routes
app.include_router(credits.router, prefix='/api/credits', tags=['credits'])
app.include_router(rentals.router, prefix='/api/rentals', tags=['rentals'])
app.include_router(admin.router, prefix='/api/admin', tags=['admin'])
app.include_router(ws.router, tags=['push'])


@app.get('/health')
async def health_check():
    """Health check endpoint."""
    return {'status': 'ok', 'service': 'otpdesk-api'}
