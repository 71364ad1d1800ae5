import os

import uvicorn
from rich.console import Console

console = Console()

# ===========================================================
# CONFIGURATION (override with env vars)
# ===========================================================
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
RELOAD = os.getenv("RELOAD", "false").lower() == "true"


def main():
    console.print(
        f"[bold cyan]Starting session document chat API on {HOST}:{PORT}[/bold cyan]"
    )
    uvicorn.run("api.main:app", host=HOST, port=PORT, reload=RELOAD)


if __name__ == "__main__":
    main()
