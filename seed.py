"""Load the fixed product-transaction dataset into the ``transactions`` table.

Existing rows are replaced. Run with ``python seed.py [--url URL]``.
"""

from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from store import TransactionStore


logger = logging.getLogger(__name__)


def fetch_dataset(url: str, timeout: float = 30) -> List[Dict[str, Any]]:
	r = requests.get(url, timeout=timeout)
	r.raise_for_status()
	data = r.json()
	if not isinstance(data, list):
		raise ValueError(f"Expected a JSON list from {url}, got {type(data).__name__}")
	return data


def _parse_date_of_sale(value: Any) -> dt.datetime:
	if isinstance(value, dt.datetime):
		parsed = value
	elif isinstance(value, str) and value:
		# fromisoformat() on older interpreters does not accept a trailing "Z".
		parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
	else:
		raise ValueError(f"dateOfSale must be an ISO-8601 string, got {value!r}")
	if parsed.tzinfo is not None:
		parsed = parsed.astimezone(dt.timezone.utc).replace(tzinfo=None)
	return parsed


def _parse_sold(value: Any) -> bool:
	if isinstance(value, str):
		return value.strip().lower() in {"1", "true", "yes"}
	return bool(value)


def normalize_record(raw: Dict[str, Any]) -> Tuple[Any, ...]:
	"""Map one dataset entry to the store's column order.

	The remote dataset uses ``title``/``description``; exports of this API use
	``productTitle``/``productDescription``. Both are accepted.
	"""
	title = raw.get("productTitle", raw.get("title")) or ""
	description = raw.get("productDescription", raw.get("description")) or ""
	try:
		price = float(raw.get("price") or 0)
	except (TypeError, ValueError):
		raise ValueError(f"price must be a number, got {raw.get('price')!r}")
	return (
		str(title),
		str(description),
		round(price, 2),
		_parse_date_of_sale(raw.get("dateOfSale")),
		raw.get("category"),
		_parse_sold(raw.get("sold")),
	)


def initialize_database(store: TransactionStore, records: Iterable[Dict[str, Any]], *, create_schema: bool = True) -> int:
	rows = [normalize_record(r) for r in records]
	if create_schema:
		store.create_schema()
	inserted = store.replace_all(rows)
	logger.info("Inserted %d transactions", inserted)
	return inserted


def main(argv: Optional[Sequence[str]] = None) -> int:
	from app import app

	parser = argparse.ArgumentParser(description="Seed the transactions table from a remote JSON dataset.")
	parser.add_argument("--url", default=app.config["SEED_URL"])
	parser.add_argument("--timeout", type=float, default=app.config["SEED_TIMEOUT"])
	args = parser.parse_args(argv)

	logging.basicConfig(level=app.config["LOG_LEVEL"])
	store: TransactionStore = app.extensions["transaction_store"]
	try:
		records = fetch_dataset(args.url, timeout=args.timeout)
		logger.info("Fetched %d records from %s", len(records), args.url)
		initialize_database(store, records)
	except Exception:
		logger.exception("Error initializing database")
		return 1
	finally:
		store.close()
	logger.info("Database initialized successfully")
	return 0


if __name__ == "__main__":
	sys.exit(main())
