import uvicorn

from .settings import settings


if __name__ == "__main__":
    uvicorn.run("escape_room.main:app", host=settings.host, port=settings.port)
