import os
import signal
import sys
import traceback
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Load .env before reading PORT/HOST/ENVIRONMENT
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from folio.core.config import load_config  # noqa: E402
from folio.utils.logger import setup_logger  # noqa: E402


def _unhandled_exception(exc_type, exc_value, exc_tb):
    """Print unhandled exceptions so the process manager's log shows the cause."""
    if exc_type is KeyboardInterrupt:
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    msg = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    print("Unhandled exception (process will exit):\n" + msg, file=sys.stderr, flush=True)
    sys.__excepthook__(exc_type, exc_value, exc_tb)


if __name__ == "__main__":
    sys.excepthook = _unhandled_exception

    config = load_config()
    setup_logger(log_level=config.log_level, log_format=config.log_format, file_path=config.log_file)

    PORT = int(os.getenv("PORT", "8000"))
    HOST = os.getenv("HOST", "127.0.0.1")
    RELOAD = config.environment == "development"
    WORKERS = int(os.getenv("WORKERS", "1")) if config.is_production else 1

    print("Starting Folio admin API...")
    print(f"Environment: {config.environment}")
    print(f"Listening on http://{HOST}:{PORT}")
    print("Press CTRL+C to stop the server")

    def signal_handler(sig, frame):
        print("\n\nShutdown signal received. Stopping server...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        uvicorn.run(
            "folio_web.app:create_app",
            factory=True,
            host=HOST,
            port=PORT,
            reload=RELOAD,
            workers=WORKERS if WORKERS > 1 else None,
            log_level="info" if config.is_production else "debug",
        )
    except KeyboardInterrupt:
        print("\n\nShutdown complete.")
