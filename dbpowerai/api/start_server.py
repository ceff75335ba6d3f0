# start_server.py - Start the analysis API and wait until it answers health checks

import argparse
import threading
import time

import requests
import uvicorn

from dbpowerai.config.startup_config import get_startup_config


def wait_for_server(base_url: str, attempts: int = 30) -> bool:
    """Poll /health until the server answers or the attempts run out."""
    print("Waiting for server to start...")
    for _ in range(attempts):
        try:
            response = requests.get(f"{base_url}/health", timeout=2)
            if response.status_code == 200:
                print("Server is ready!")
                return True
        except requests.exceptions.RequestException:
            pass
        time.sleep(1)

    print(f"Server failed to start within {attempts} seconds")
    return False


def start_server(host: str, port: int, reload: bool = False):
    """Start the FastAPI server."""
    print("Starting DBPowerAI server...")
    uvicorn.run("dbpowerai.api.main_app:app", host=host, port=port, reload=reload, log_level="info")


def main():
    config = get_startup_config()

    parser = argparse.ArgumentParser(description="Run the DBPowerAI analysis API")
    parser.add_argument("--host", default=config.api_host)
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    args = parser.parse_args()

    if args.reload:
        start_server(args.host, args.port, reload=True)
        return

    server_thread = threading.Thread(target=start_server, args=(args.host, args.port), daemon=True)
    server_thread.start()

    base_url = f"http://{args.host}:{args.port}"
    if wait_for_server(base_url):
        print(config.get_startup_summary())
        print(f"\n🌐 API docs: {base_url}/docs")
        print(f"📈 Health: {base_url}/health")
    else:
        print("\n⚠️ Server did not report healthy; check the logs above")

    try:
        server_thread.join()
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
