from __future__ import annotations

import logging
import os
import re
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Any

from flask import Flask, abort, current_app, g, jsonify, redirect, render_template, request, session, url_for
from werkzeug.exceptions import BadRequest, HTTPException, MethodNotAllowed
from werkzeug.security import check_password_hash

from .colladas import delete_collada, get_collada_by_id, list_colladas, list_markers_by_collada
from .conditions import get_condition_by_id, get_conditions_by_study, list_conditions
from .db import connect, init_db
from .environments import get_environments, get_interfaces
from .errors import InvalidFieldSet, RmsError
from .pairs import (
    create_pair,
    delete_pair_by_id,
    get_pair_by_environment_and_interface,
    get_pair_by_id,
    get_pairs_by_environment,
    list_pairs,
    load_robot_environment,
    render_pair_editor,
    update_pair,
    valid_pair_fields,
)
from .widgets import DEFAULT_MESSAGING_CLIENT_HANDLE, get_nav2d_by_id, render_nav_widget

API_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
JS_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
NO_CACHE = "no-cache, must-revalidate"


def _db_path(app: Flask) -> Path:
    return Path(app.config["DATABASE_PATH"])


def get_conn() -> sqlite3.Connection:
    """Return the connection for the current app context, opening it on first use."""
    if "conn" not in g:
        g.conn = connect(_db_path(current_app))
    return g.conn


def _configure_storage(app: Flask, database_path: str | None) -> None:
    app.config["DATABASE_PATH"] = database_path or os.environ.get("RMS_DB_PATH", "./rms.db")
    init_db(_db_path(app))

    @app.teardown_appcontext
    def close_connection(_error: BaseException | None) -> None:
        conn = g.pop("conn", None)
        if conn is not None:
            conn.close()


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app_name})


def _configure_widgets(app: Flask) -> None:
    handle = os.environ.get("RMS_MESSAGING_CLIENT", DEFAULT_MESSAGING_CLIENT_HANDLE)
    if not JS_IDENTIFIER_PATTERN.match(handle):
        raise ValueError(f"RMS_MESSAGING_CLIENT must be a JavaScript identifier, got {handle!r}")
    app.config["MESSAGING_CLIENT_HANDLE"] = handle


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def create_state(status: int, msg: str, data: Any = None) -> tuple[Any, int]:
    return jsonify({"ok": status < 400, "msg": msg, "data": data}), status


def create_200_state(data: Any = None, msg: str = "OK") -> tuple[Any, int]:
    return create_state(200, msg, data)


def create_401_state(msg: str = "Invalid authentication.") -> tuple[Any, int]:
    return create_state(401, msg)


def create_404_state(msg: str) -> tuple[Any, int]:
    return create_state(404, msg)


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(RmsError)
    def handle_rms_error(error: RmsError) -> Any:
        app.logger.info(
            "request_rejected",
            extra={"path": request.path, "method": request.method, "status_code": error.status, "error": str(error)},
        )
        if _is_api_request():
            return create_state(error.status, str(error))
        return redirect(url_for("index", error=str(error)))

    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return create_state(400, "invalid request payload")
        return error

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        if _is_api_request():
            if isinstance(error, MethodNotAllowed):
                return _method_unavailable()
            return create_state(error.code or 500, error.description or "")
        return error

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        if _is_api_request():
            return create_state(500, "internal server error")
        raise error


def _check_account(username: str, password: str) -> dict[str, str] | None:
    row = get_conn().execute(
        "SELECT username, password_hash, role FROM user_accounts WHERE username = ?", (username,)
    ).fetchone()
    if row is None or not check_password_hash(row["password_hash"], password):
        return None
    return {"username": row["username"], "role": row["role"]}


def authenticate() -> dict[str, str] | None:
    """Return the caller's account from the session or HTTP Basic credentials."""
    if session.get("username"):
        return {"username": session["username"], "role": session.get("role", "")}
    credentials = request.authorization
    if credentials is None or not credentials.username:
        return None
    return _check_account(credentials.username, credentials.password or "")


def _json_body() -> dict[str, Any]:
    body = request.get_json(force=True, silent=False) or {}
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object")
    return body


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidFieldSet(f"{name} must be an integer, got {raw!r}") from None


def _method_unavailable() -> tuple[Any, int]:
    return create_404_state(f"{request.method} method is unavailable.")


def _configure_auth(app: Flask) -> None:
    app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-change-me")

    @app.before_request
    def require_login() -> Any:
        if request.endpoint in {"login", "static", "healthz"}:
            return None
        if session.get("username"):
            return None
        return redirect(url_for("login"))

    @app.route("/login", methods=["GET", "POST"])
    def login() -> Any:
        error = None
        if request.method == "POST":
            username = request.form.get("username", "")
            account = _check_account(username, request.form.get("password", ""))
            if account is not None:
                session["username"] = account["username"]
                session["role"] = account["role"]
                app.logger.info("login_success", extra={"username": username, "role": account["role"]})
                return redirect(url_for("index"))
            app.logger.warning("login_failed", extra={"username": username})
            error = "Invalid credentials"
        return render_template("login.html", error=error)

    @app.post("/logout")
    def logout() -> Any:
        app.logger.info("logout", extra={"username": session.get("username", "anonymous")})
        session.clear()
        return redirect(url_for("login"))


def create_admin_app(database_path: str | None = None) -> Flask:
    app = Flask(__name__, template_folder="templates")
    _configure_observability(app, "admin")
    _configure_error_handlers(app)
    _configure_storage(app, database_path)
    _configure_widgets(app)
    _configure_auth(app)

    @app.get("/")
    def index() -> str:
        conn = get_conn()
        edit = request.args.get("edit", type=int)
        environments = {env.envid: env for env in get_environments(conn)}
        interfaces = {intf.intid: intf for intf in get_interfaces(conn)}
        return render_template(
            "admin/index.html",
            pairs=list_pairs(conn),
            environments=environments,
            interfaces=interfaces,
            conditions=list_conditions(conn),
            editor=render_pair_editor(conn, edit, action=url_for("save_pair")),
            error=request.args.get("error", ""),
        )

    @app.post("/pairs")
    def save_pair() -> Any:
        pair_id = request.form.get("id", "").strip()
        envid = request.form.get("envid", "").strip()
        intid = request.form.get("intid", "").strip()
        try:
            if pair_id:
                fields = {"id": pair_id}
                if envid:
                    fields["envid"] = envid
                if intid:
                    fields["intid"] = intid
                update_pair(get_conn(), fields)
            else:
                create_pair(get_conn(), envid, intid)
        except RmsError as exc:
            return redirect(url_for("index", edit=pair_id or None, error=str(exc)))
        return redirect(url_for("index"))

    @app.post("/pairs/<int:pairid>/delete")
    def delete_pair(pairid: int) -> Any:
        delete_pair_by_id(get_conn(), pairid)
        return redirect(url_for("index"))

    @app.get("/interfaces/<int:pairid>")
    def interface_page(pairid: int) -> str:
        conn = get_conn()
        robot_environment = load_robot_environment(conn, pairid)
        if robot_environment is None:
            abort(404)
        width = request.args.get("width", type=int)
        height = request.args.get("height", type=int)
        widgets = [render_nav_widget(conn, nav, width, height) for nav in robot_environment.nav2ds]
        return render_template("interface.html", robot_environment=robot_environment, widgets=widgets)

    return app


def create_api_app(database_path: str | None = None) -> Flask:
    app = Flask(__name__, template_folder="templates")
    _configure_observability(app, "api")
    _configure_error_handlers(app)
    _configure_storage(app, database_path)
    _configure_widgets(app)
    app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-change-me")

    @app.before_request
    def require_authentication() -> Any:
        if request.endpoint == "healthz":
            return None
        user = authenticate()
        if user is None:
            return create_401_state()
        g.user = user
        return None

    @app.after_request
    def disable_caching(response: Any) -> Any:
        if response.mimetype == "application/json":
            response.headers["Cache-Control"] = NO_CACHE
        return response

    @app.route("/api/config/logs", methods=API_METHODS, provide_automatic_options=False)
    def logs() -> Any:
        return _method_unavailable()

    @app.route("/api/robot_environments/pairs", methods=API_METHODS, provide_automatic_options=False)
    def pairs() -> Any:
        conn = get_conn()
        if request.method in {"GET", "HEAD"}:
            pairid = _int_arg("id")
            envid = _int_arg("envid")
            intid = _int_arg("intid")
            if pairid is not None:
                pair = get_pair_by_id(conn, pairid)
                if pair is None:
                    return create_404_state(f"Environment-interface pair ID {pairid} does not exist")
                return create_200_state(pair.as_dict())
            if envid is not None and intid is not None:
                pair = get_pair_by_environment_and_interface(conn, envid, intid)
                if pair is None:
                    return create_404_state(f"Environment-interface pair {envid}-{intid} does not exist")
                return create_200_state(pair.as_dict())
            if envid is not None:
                return create_200_state([pair.as_dict() for pair in get_pairs_by_environment(conn, envid)])
            if intid is not None:
                raise InvalidFieldSet("intid is only accepted together with envid")
            return create_200_state([pair.as_dict() for pair in list_pairs(conn)])

        if request.method == "POST":
            body = _json_body()
            if not valid_pair_fields(body):
                return create_state(400, "Exactly the envid and intid fields are required.")
            pair = create_pair(conn, body["envid"], body["intid"])
            app.logger.info("api_pair_created", extra={"username": g.user["username"], "pairid": pair.pairid})
            return create_state(201, "Environment-interface pair created", pair.as_dict())

        if request.method == "PUT":
            pair = update_pair(conn, _json_body())
            return create_200_state(pair.as_dict(), "Environment-interface pair updated")

        if request.method == "DELETE":
            pairid = _int_arg("id")
            if pairid is None:
                return create_state(400, "ID field missing in delete")
            delete_pair_by_id(conn, pairid)
            app.logger.info("api_pair_deleted", extra={"username": g.user["username"], "pairid": pairid})
            return create_200_state(msg=f"Environment-interface pair ID {pairid} deleted")

        return _method_unavailable()

    @app.get("/api/robot_environments/pairs/editor")
    def pair_editor() -> Any:
        html = render_pair_editor(get_conn(), _int_arg("id"))
        return create_200_state({"html": str(html)})

    @app.get("/api/robot_environments/widgets/nav2d")
    def nav2d_widget() -> Any:
        conn = get_conn()
        navid = _int_arg("id")
        if navid is None:
            return create_state(400, "ID field missing in request")
        nav = get_nav2d_by_id(conn, navid)
        if nav is None:
            return create_404_state(f"Nav2D ID {navid} does not exist")
        html = render_nav_widget(conn, nav, _int_arg("width"), _int_arg("height"))
        return create_200_state({"html": str(html)})

    @app.route("/api/robot_environments/colladas", methods=API_METHODS, provide_automatic_options=False)
    def colladas() -> Any:
        conn = get_conn()
        colladaid = _int_arg("id")
        if request.method in {"GET", "HEAD"}:
            if colladaid is None:
                return create_200_state([asdict(item) for item in list_colladas(conn)])
            collada = get_collada_by_id(conn, colladaid)
            if collada is None:
                return create_404_state(f"Collada ID {colladaid} does not exist")
            markers = list_markers_by_collada(conn, colladaid)
            return create_200_state(
                {**asdict(collada), "ims": [asdict(marker) for marker in markers]}
            )
        if request.method == "DELETE":
            if colladaid is None:
                return create_state(400, "ID field missing in delete")
            removed = delete_collada(conn, colladaid)
            return create_200_state({"ims_removed": removed}, f"Collada ID {colladaid} deleted")
        return _method_unavailable()

    @app.route("/api/user_studies/conditions", methods=API_METHODS, provide_automatic_options=False)
    def conditions() -> Any:
        if request.method not in {"GET", "HEAD"}:
            return _method_unavailable()
        conn = get_conn()
        condid = _int_arg("id")
        studyid = _int_arg("studyid")
        if condid is not None:
            condition = get_condition_by_id(conn, condid)
            if condition is None:
                return create_404_state(f"Condition ID {condid} does not exist")
            return create_200_state(asdict(condition))
        if studyid is not None:
            return create_200_state([asdict(item) for item in get_conditions_by_study(conn, studyid)])
        return create_200_state([asdict(item) for item in list_conditions(conn)])

    return app
