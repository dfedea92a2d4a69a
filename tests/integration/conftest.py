"""
Live HTTP target for integration tests.

A small Flask app mimics the API under test: ``POST /login`` exchanges
known credentials for a token and ``POST /alunos`` creates a student
when given a valid bearer token.  It is served by the Flask development
server in a background thread so the harness exercises a real socket
through ``requests``.

Key Concepts Demonstrated:
- Live server fixture in a daemon thread
- Session-scoped server, function-scoped state reset
"""

import secrets
import socket
import threading
import time

import pytest
import requests
from flask import Flask, jsonify, request

from load_harness.payloads import STUDENT_FIELDS
from tests.conftest import USERS


def create_target_app() -> Flask:
    """Build the fake student-registration API."""
    app = Flask(__name__)
    credentials = {user["username"]: user["password"] for user in USERS}
    state = {"tokens": set(), "students": []}
    lock = threading.Lock()
    app.config["TARGET_STATE"] = state

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.post("/login")
    def login():
        data = request.get_json(silent=True) or {}
        if credentials.get(data.get("username")) != data.get("password"):
            return jsonify({"error": "invalid credentials"}), 401
        token = secrets.token_hex(16)
        with lock:
            state["tokens"].add(token)
        return jsonify({"token": token}), 200

    @app.post("/alunos")
    def create_student():
        auth = request.headers.get("Authorization", "")
        token = auth.removeprefix("Bearer ")
        if not auth.startswith("Bearer ") or token not in state["tokens"]:
            return jsonify({"error": "unauthorized"}), 401

        data = request.get_json(silent=True) or {}
        missing = [field for field in STUDENT_FIELDS if field not in data]
        if missing:
            return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

        with lock:
            student = {"id": len(state["students"]) + 1, **data}
            state["students"].append(student)
        return jsonify(student), 201

    return app


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="session")
def target_app():
    return create_target_app()


@pytest.fixture(scope="session")
def live_server(target_app):
    """
    Start the target API in a background thread.

    Yields:
        str: Base URL of the running server.
    """
    host = "127.0.0.1"
    port = _free_port()

    server_thread = threading.Thread(
        target=lambda: target_app.run(host=host, port=port, use_reloader=False, threaded=True)
    )
    server_thread.daemon = True
    server_thread.start()

    base_url = f"http://{host}:{port}"
    deadline = time.monotonic() + 10
    while True:
        try:
            requests.get(f"{base_url}/health", timeout=0.5)
            break
        except requests.ConnectionError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)

    yield base_url

    # Server will stop when test session ends (daemon thread)


@pytest.fixture
def target_state(target_app):
    """Clear created students and issued tokens around each test."""
    state = target_app.config["TARGET_STATE"]
    state["students"].clear()
    state["tokens"].clear()
    yield state
    state["students"].clear()
    state["tokens"].clear()
