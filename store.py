from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)


COLUMNS = ("product_title", "product_description", "price", "date_of_sale", "category", "sold")

# MySQL DDL; used by the seed command only.
# DOUBLE renders as "50" / "950.5" under CAST(... AS CHAR), which the price-text search relies on.
SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
	id INT AUTO_INCREMENT PRIMARY KEY,
	product_title VARCHAR(255) NOT NULL DEFAULT '',
	product_description TEXT,
	price DOUBLE NOT NULL DEFAULT 0,
	date_of_sale DATETIME NOT NULL,
	category VARCHAR(100),
	sold BOOLEAN NOT NULL DEFAULT FALSE,
	INDEX idx_transactions_date_of_sale (date_of_sale)
)
"""

LIKE_ESCAPE = "!"


class StoreError(RuntimeError):
	"""Raised when the database cannot be reached or rejects a query."""


def escape_like(value: str) -> str:
	for ch in (LIKE_ESCAPE, "%", "_"):
		value = value.replace(ch, LIKE_ESCAPE + ch)
	return value


def _fetchall_dict(cursor) -> List[Dict[str, Any]]:
	rows = cursor.fetchall() or []
	if rows and isinstance(rows[0], dict):
		return list(rows)
	desc = [col[0] for col in cursor.description]
	return [dict(zip(desc, r)) for r in rows]


class TransactionStore:
	"""Read queries (and the seed-only bulk load) over the ``transactions`` table.

	Every query opens its own connection from ``connect`` and closes it when
	done, so concurrent callers never share one and no read snapshot outlives
	its query. ``placeholder`` is the driver's parameter marker (``%s`` for
	MySQLdb).
	"""

	def __init__(self, connect: Callable[[], Any], *, placeholder: str = "%s") -> None:
		self._connect = connect
		self._closed = False
		self.placeholder = placeholder

	# -------------------------
	# Connection lifecycle
	# -------------------------
	def _open(self) -> Any:
		if self._closed:
			raise StoreError("Store is closed")
		try:
			return self._connect()
		except Exception as exc:
			raise StoreError(f"Could not connect to database: {exc}") from exc

	@contextmanager
	def _cursor(self, *, commit: bool = False) -> Iterator[Any]:
		conn = self._open()
		try:
			cur = conn.cursor()
			try:
				yield cur
			finally:
				cur.close()
			if commit:
				conn.commit()
			else:
				# Ends the read transaction MySQLdb opened with autocommit off.
				conn.rollback()
		except Exception as exc:
			raise StoreError(str(exc) or exc.__class__.__name__) from exc
		finally:
			conn.close()

	def close(self) -> None:
		self._closed = True
		logger.debug("Transaction store closed")

	# -------------------------
	# Filters
	# -------------------------
	def _where(
		self,
		search: str = "",
		start: Optional[dt.datetime] = None,
		end: Optional[dt.datetime] = None,
	) -> Tuple[str, List[Any]]:
		ph = self.placeholder
		where: List[str] = []
		params: List[Any] = []

		if search:
			pattern = f"%{escape_like(search.lower())}%"
			where.append(
				f"(LOWER(product_title) LIKE {ph} ESCAPE '{LIKE_ESCAPE}'"
				f" OR LOWER(product_description) LIKE {ph} ESCAPE '{LIKE_ESCAPE}'"
				f" OR CAST(price AS CHAR) LIKE {ph} ESCAPE '{LIKE_ESCAPE}')"
			)
			params.extend([pattern, pattern, pattern])
		if start is not None:
			where.append(f"date_of_sale >= {ph}")
			params.append(start)
		if end is not None:
			where.append(f"date_of_sale < {ph}")
			params.append(end)

		if not where:
			return "", params
		return " WHERE " + " AND ".join(where), params

	# -------------------------
	# Reads
	# -------------------------
	def find(
		self,
		search: str = "",
		start: Optional[dt.datetime] = None,
		end: Optional[dt.datetime] = None,
		*,
		offset: int = 0,
		limit: int = 10,
	) -> List[Dict[str, Any]]:
		where, params = self._where(search, start, end)
		ph = self.placeholder
		sql = (
			"SELECT id, product_title, product_description, price, date_of_sale, category, sold"
			f" FROM transactions{where} ORDER BY id LIMIT {ph} OFFSET {ph}"
		)
		with self._cursor() as cur:
			cur.execute(sql, tuple(params) + (limit, offset))
			return _fetchall_dict(cur)

	def count(
		self,
		search: str = "",
		start: Optional[dt.datetime] = None,
		end: Optional[dt.datetime] = None,
	) -> int:
		where, params = self._where(search, start, end)
		with self._cursor() as cur:
			cur.execute(f"SELECT COUNT(*) AS total FROM transactions{where}", tuple(params))
			row = _fetchall_dict(cur)[0]
		return int(row["total"] or 0)

	def month_totals(self, start: dt.datetime, end: dt.datetime) -> Dict[str, Any]:
		where, params = self._where(start=start, end=end)
		sql = (
			"SELECT COALESCE(SUM(price), 0) AS total_amount,"
			" COALESCE(SUM(CASE WHEN sold THEN 1 ELSE 0 END), 0) AS sold_items,"
			" COALESCE(SUM(CASE WHEN sold THEN 0 ELSE 1 END), 0) AS not_sold_items"
			f" FROM transactions{where}"
		)
		with self._cursor() as cur:
			cur.execute(sql, tuple(params))
			return _fetchall_dict(cur)[0]

	def price_histogram(
		self,
		start: dt.datetime,
		end: dt.datetime,
		upper_bounds: Sequence[float],
	) -> Dict[int, int]:
		"""Count rows per price bucket; bucket ``i`` is below ``upper_bounds[i]``.

		Prices at or above the last bound land in bucket ``len(upper_bounds)``.
		"""
		cases = " ".join(
			f"WHEN price < {float(bound):g} THEN {i}" for i, bound in enumerate(upper_bounds)
		)
		where, params = self._where(start=start, end=end)
		sql = (
			f"SELECT CASE {cases} ELSE {len(upper_bounds)} END AS bucket, COUNT(*) AS total"
			f" FROM transactions{where} GROUP BY bucket"
		)
		with self._cursor() as cur:
			cur.execute(sql, tuple(params))
			rows = _fetchall_dict(cur)
		return {int(r["bucket"]): int(r["total"]) for r in rows}

	def category_counts(self, start: dt.datetime, end: dt.datetime) -> List[Tuple[Any, int]]:
		where, params = self._where(start=start, end=end)
		sql = (
			"SELECT category, COUNT(*) AS total"
			f" FROM transactions{where} GROUP BY category ORDER BY category"
		)
		with self._cursor() as cur:
			cur.execute(sql, tuple(params))
			rows = _fetchall_dict(cur)
		return [(r["category"], int(r["total"])) for r in rows]

	# -------------------------
	# Seed-only writes
	# -------------------------
	def create_schema(self) -> None:
		with self._cursor(commit=True) as cur:
			cur.execute(SCHEMA)

	def replace_all(self, rows: Iterable[Sequence[Any]]) -> int:
		"""Delete every stored transaction and bulk-insert ``rows`` in one commit."""
		rows = [tuple(r) for r in rows]
		ph = self.placeholder
		sql = "INSERT INTO transactions ({}) VALUES ({})".format(
			", ".join(COLUMNS), ", ".join([ph] * len(COLUMNS))
		)
		with self._cursor(commit=True) as cur:
			cur.execute("DELETE FROM transactions")
			if rows:
				cur.executemany(sql, rows)
		return len(rows)
