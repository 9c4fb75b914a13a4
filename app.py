from __future__ import annotations

import atexit
import logging
import os
from typing import Any, Dict, Optional, Tuple

import dicttoxml
from flask import Flask, Response, current_app, jsonify, make_response, request
from flask_mysqldb import MySQL
from werkzeug.exceptions import BadRequest, HTTPException, NotFound

from config import Config
from store import StoreError, TransactionStore
from transactions import MonthWindow, TransactionQueryService, month_window


logger = logging.getLogger(__name__)

mysql = MySQL()


def _parse_int(value: Any, field: str, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
	try:
		parsed = int(value)
	except (TypeError, ValueError):
		raise BadRequest(f"{field} must be an integer")
	if minimum is not None and parsed < minimum:
		raise BadRequest(f"{field} must be >= {minimum}")
	if maximum is not None and parsed > maximum:
		raise BadRequest(f"{field} must be <= {maximum}")
	return parsed


def _pagination() -> Tuple[int, int]:
	page = _parse_int(request.args.get("page") or 1, "page", minimum=1)
	per_page = _parse_int(request.args.get("perPage") or current_app.config["DEFAULT_PER_PAGE"], "perPage", minimum=1)
	# Oversized pages are capped rather than rejected.
	return page, min(per_page, current_app.config["MAX_PER_PAGE"])


def _month_window(month: str) -> MonthWindow:
	year = _parse_int(request.args.get("year") or current_app.config["REPORT_YEAR"], "year", minimum=1)
	try:
		return month_window(month, year)
	except ValueError as exc:
		raise BadRequest(str(exc))


def _get_format(*, strict: bool = True) -> str:
	fmt = (request.args.get("format") or "json").strip().lower()
	if fmt not in {"json", "xml"}:
		if not strict:
			return "json"
		raise BadRequest("format must be 'json' or 'xml'")
	return fmt


def _to_xml(payload: Any, root: str = "response") -> bytes:
	# dicttoxml wraps lists; make output predictable
	return dicttoxml.dicttoxml(payload, custom_root=root, attr_type=False)


def api_response(payload: Any, status: int = 200, *, root: str = "response", strict: bool = True) -> Response:
	fmt = _get_format(strict=strict)
	if fmt == "xml":
		xml_bytes = _to_xml(payload, root=root)
		resp = make_response(xml_bytes, status)
		resp.headers["Content-Type"] = "application/xml; charset=utf-8"
		return resp
	return make_response(jsonify(payload), status)


def error_response(message: str, status: int, *, details: Optional[Dict[str, Any]] = None) -> Response:
	payload: Dict[str, Any] = {"error": message, "status": status}
	if details:
		payload["details"] = details
	return api_response(payload, status=status, root="error", strict=False)


def _mysql_store(app: Flask) -> TransactionStore:
	def connect() -> Any:
		# flask-mysqldb reads its settings from the app config.
		with app.app_context():
			return mysql.connect

	return TransactionStore(connect)


def create_app(overrides: Optional[Dict[str, Any]] = None, *, store: Optional[TransactionStore] = None) -> Flask:
	app = Flask(__name__)
	app.config.from_object(Config)

	# Ensure env vars always take precedence (Config class attributes are evaluated at import time).
	def _env(name: str, default: Any) -> Any:
		value = os.getenv(name)
		if value is None:
			return default
		return value

	for key in ("MYSQL_USER", "MYSQL_PASSWORD", "MYSQL_HOST", "MYSQL_DB", "SEED_URL", "LOG_LEVEL"):
		app.config[key] = _env(key, app.config.get(key))
	for key in ("MYSQL_PORT", "REPORT_YEAR", "DEFAULT_PER_PAGE", "MAX_PER_PAGE", "COMBINED_WORKERS"):
		app.config[key] = int(_env(key, app.config.get(key)))
	app.config["SEED_TIMEOUT"] = float(_env("SEED_TIMEOUT", app.config.get("SEED_TIMEOUT")))
	if overrides:
		app.config.update(overrides)

	mysql.init_app(app)

	owns_store = store is None
	if store is None:
		store = _mysql_store(app)
	service = TransactionQueryService(store, max_workers=app.config["COMBINED_WORKERS"])
	app.extensions["transaction_store"] = store
	app.extensions["transaction_service"] = service

	atexit.register(service.close)
	if owns_store:
		atexit.register(store.close)

	@app.get("/health")
	def health() -> Response:
		return api_response({"status": "ok"})

	# -------------------------
	# Listing
	# -------------------------
	@app.get("/api/transactions")
	def list_transactions() -> Response:
		page, per_page = _pagination()
		search = request.args.get("search", "")
		window = None
		if request.args.get("month"):
			window = _month_window(request.args["month"])
		result = service.list_transactions(page=page, per_page=per_page, search=search, window=window)
		return api_response(result)

	# -------------------------
	# Monthly reports
	# -------------------------
	@app.get("/api/statistics/<month>")
	def statistics(month: str) -> Response:
		return api_response(service.statistics(_month_window(month)))

	@app.get("/api/bar-chart/<month>")
	def bar_chart(month: str) -> Response:
		return api_response(service.bar_chart(_month_window(month)))

	@app.get("/api/pie-chart/<month>")
	def pie_chart(month: str) -> Response:
		return api_response(service.pie_chart(_month_window(month)))

	@app.get("/api/combined/<month>")
	def combined(month: str) -> Response:
		window = _month_window(month)
		page, per_page = _pagination()
		result = service.combined(window, page=page, per_page=per_page, search=request.args.get("search", ""))
		return api_response(result)

	# -------------------------
	# Consistent JSON/XML errors
	# -------------------------
	@app.errorhandler(BadRequest)
	def _bad_request(err: BadRequest):
		return error_response(str(err.description or "Bad request"), 400)

	@app.errorhandler(NotFound)
	def _not_found(err: NotFound):
		return error_response("Not found", 404)

	@app.errorhandler(HTTPException)
	def _http_error(err: HTTPException):
		return error_response(err.name, err.code or 500)

	@app.errorhandler(StoreError)
	def _query_failed(err: StoreError):
		logger.error("Query failed on %s %s", request.method, request.path, exc_info=err)
		return error_response("Query failed", 500)

	@app.errorhandler(Exception)
	def _unhandled(err: Exception):
		logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=err)
		return error_response("Internal server error", 500)

	return app


app = create_app()


if __name__ == "__main__":
	logging.basicConfig(level=app.config["LOG_LEVEL"])
	port = int(os.getenv("PORT", 5000))
	app.run(host="0.0.0.0", port=port, debug=True)
