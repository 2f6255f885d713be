import uvicorn

from . import config
from .app import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
