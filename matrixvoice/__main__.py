"""
Entry point for the Matrix voice server.
Run with: python -m matrixvoice
"""

import uvicorn

from matrixvoice import __version__
from matrixvoice.io.config import get_config
from matrixvoice.utils.logger import set_level


def main():
    config = get_config()
    set_level(config.get("matrix.log_level", "INFO"))
    host = config.get("api.host", "127.0.0.1")
    port = int(config.get("api.port", 8421))

    print("\033[32m")
    print("  ╔══════════════════════════════════════╗")
    print(f"  ║      MATRIX VOICE SERVER v{__version__}       ║")
    print(f"  ║   http://localhost:{port}              ║")
    print(f"  ║   ws://localhost:{port}/ws              ║")
    print("  ╚══════════════════════════════════════╝")
    print("\033[0m")

    uvicorn.run(
        "matrixvoice.api.server:app",
        host=host,
        port=port,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    main()
