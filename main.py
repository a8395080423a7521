import logging

from fastapi import FastAPI

import config
from db import create_db_and_tables
from errors import register_exception_handlers
from routers import auth, conversations, donations, organization, users, volunteer

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="ShareLine Donations")

register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


@app.get("/")
def read_root():
    return {"name": "ShareLine Donations", "status": "ok"}


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(donations.router, prefix="/donations")
app.include_router(organization.router, prefix="/organization")
app.include_router(volunteer.router, prefix="/volunteer")
app.include_router(conversations.router, prefix="/conversations")
