from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api.routes import api_router
from .logging_context import configure_logging
from dotenv import load_dotenv
import os
import pathlib

# Load environment variables from .env (if present)
# Try to load from the project root first, then current directory
project_root = pathlib.Path(__file__).parent.parent.parent
env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

configure_logging(os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="Freight Callflow")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")

@app.get("/")
async def root():
    return {"status": "ok"}
