"""TNES dev launcher. Starts the backend proxy and campaign API in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="TNES dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Save-slot storage directory (default: ./data)")
    parser.add_argument("--mock", action="store_true",
                        help="Use the deterministic mock generator instead of the LLM proxy")
    parser.add_argument("--port", default=BACKEND_PORT,
                        help=f"Backend port (default: {BACKEND_PORT})")
    args = parser.parse_args()

    # Build env for the subprocess so the backend picks up the same options
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())
    if args.mock:
        env["TNES_MOCK"] = "1"
    env.setdefault("TNES_PROXY_URL", f"http://localhost:{args.port}")

    procs: list[subprocess.Popen] = []

    def shutdown(*_):
        print("\nShutting down...")
        for p in procs:
            p.terminate()
        for p in procs:
            p.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting backend on http://localhost:{args.port} ...")
    if not (env.get("CLAUDE_API_KEY") or env.get("VITE_CLAUDE_API_KEY")) and not args.mock:
        print("Warning: CLAUDE_API_KEY is not set; the proxy will answer MISSING_API_KEY.")
    procs.append(subprocess.Popen(
        ["uv", "run", "uvicorn", "backend.app:app", "--reload", "--host", HOST, "--port", str(args.port)],
        cwd=ROOT, env=env,
    ))

    for p in procs:
        p.wait()


if __name__ == "__main__":
    main()
