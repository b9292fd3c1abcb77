# Run from project root: uvicorn ragloop.main:app --reload

import logging

from fastapi import FastAPI

from ragloop.api.routes import router

logging.basicConfig(level=logging.INFO)


app = FastAPI(title="Agentic Document Search")
app.include_router(router)
