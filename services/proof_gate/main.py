import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from proofgate.api import app  # noqa: E402
from proofgate.config import LOG_LEVEL  # noqa: E402

if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL.upper())
    port = int(os.getenv("PORT", "8082"))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level=LOG_LEVEL)
