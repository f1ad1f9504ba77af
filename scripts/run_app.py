import socket
import threading
import time
import webbrowser

import uvicorn

from exam_api.app import app


def wait_for_server(host, port, timeout=10):
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.2)
    return False


def open_docs():
    if wait_for_server("127.0.0.1", 8000):
        webbrowser.open("http://127.0.0.1:8000/docs")


def main():
    threading.Thread(target=open_docs, daemon=True).start()

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=8000,
        log_level="info",
    )


if __name__ == "__main__":
    main()
