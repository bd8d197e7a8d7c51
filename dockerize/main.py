import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from dockerize.routes import api
from dockerize.settings import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Dockerize Container Runner")
app.include_router(api.router)


@app.get("/")
async def root() -> RedirectResponse:
    """Send visitors to the interactive API documentation."""
    return RedirectResponse(url="/docs", status_code=303)
