"""Query and aggregation logic behind the reporting endpoints."""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import math
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from store import TransactionStore


logger = logging.getLogger(__name__)


# Closed-open price ranges; the last one has no upper bound.
PRICE_BUCKETS: Tuple[Tuple[float, Optional[float]], ...] = (
	(0, 100),
	(100, 200),
	(200, 300),
	(300, 400),
	(400, 500),
	(500, 600),
	(600, 700),
	(700, 800),
	(800, 900),
	(900, None),
)


def bucket_label(lower: float, upper: Optional[float]) -> str:
	if upper is None:
		return f"{lower:g} - above"
	return f"{lower:g} - {upper:g}"


BUCKET_LABELS: List[str] = [bucket_label(lo, hi) for lo, hi in PRICE_BUCKETS]

_MONTHS: Dict[str, int] = {
	**{calendar.month_name[i].lower(): i for i in range(1, 13)},
	**{calendar.month_abbr[i].lower(): i for i in range(1, 13)},
}


@dataclass(frozen=True)
class MonthWindow:
	year: int
	month: int
	start: dt.datetime
	end: dt.datetime


def month_window(month: Any, year: int) -> MonthWindow:
	"""Resolve a month name ("March", "mar") or number ("3", "03") to ``[start, end)``."""
	text = str(month).strip().lower()
	if text.isdigit():
		index = int(text)
	else:
		index = _MONTHS.get(text, 0)
	if not 1 <= index <= 12:
		raise ValueError(f"Unknown month: {month!r}")
	if not 1 <= year <= 9998:
		raise ValueError(f"year out of range: {year}")

	start = dt.datetime(year, index, 1)
	if index == 12:
		end = dt.datetime(year + 1, 1, 1)
	else:
		end = dt.datetime(year, index + 1, 1)
	return MonthWindow(year=year, month=index, start=start, end=end)


def _number(value: Any) -> float:
	# Drivers may hand back Decimal for aggregates.
	if value is None:
		return 0.0
	return float(value)


def serialize_transaction(row: Dict[str, Any]) -> Dict[str, Any]:
	date_of_sale = row.get("date_of_sale")
	if isinstance(date_of_sale, str):
		date_of_sale = dt.datetime.fromisoformat(date_of_sale)
	elif isinstance(date_of_sale, dt.date) and not isinstance(date_of_sale, dt.datetime):
		date_of_sale = dt.datetime.combine(date_of_sale, dt.time())
	if date_of_sale is not None:
		# Stored as naive UTC.
		date_of_sale = date_of_sale.replace(tzinfo=dt.timezone.utc).isoformat()
	return {
		"id": row.get("id"),
		"productTitle": row.get("product_title") or "",
		"productDescription": row.get("product_description") or "",
		"price": _number(row.get("price")),
		"dateOfSale": date_of_sale,
		"category": row.get("category"),
		"sold": bool(row.get("sold")),
	}


class TransactionQueryService:
	"""Read-only listing, statistics and chart queries over a ``TransactionStore``."""

	def __init__(self, store: TransactionStore, *, max_workers: int = 4) -> None:
		self.store = store
		self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="combined")

	def close(self) -> None:
		self._executor.shutdown(wait=True, cancel_futures=True)

	def list_transactions(
		self,
		*,
		page: int = 1,
		per_page: int = 10,
		search: str = "",
		window: Optional[MonthWindow] = None,
	) -> Dict[str, Any]:
		if page < 1 or per_page < 1:
			raise ValueError("page and perPage must be >= 1")
		start = window.start if window else None
		end = window.end if window else None

		rows = self.store.find(search, start, end, offset=(page - 1) * per_page, limit=per_page)
		total = self.store.count(search, start, end)
		return {
			"transactions": [serialize_transaction(r) for r in rows],
			"totalPages": math.ceil(total / per_page),
			"currentPage": page,
			"totalCount": total,
		}

	def statistics(self, window: MonthWindow) -> Dict[str, Any]:
		totals = self.store.month_totals(window.start, window.end)
		return {
			"totalAmount": round(_number(totals.get("total_amount")), 2),
			"totalSoldItems": int(totals.get("sold_items") or 0),
			"totalNotSoldItems": int(totals.get("not_sold_items") or 0),
		}

	def bar_chart(self, window: MonthWindow) -> Dict[str, Any]:
		upper_bounds = [hi for _, hi in PRICE_BUCKETS if hi is not None]
		histogram = self.store.price_histogram(window.start, window.end, upper_bounds)
		return {
			"ranges": list(BUCKET_LABELS),
			"counts": [histogram.get(i, 0) for i in range(len(PRICE_BUCKETS))],
		}

	def pie_chart(self, window: MonthWindow) -> List[Dict[str, Any]]:
		return [
			{"_id": category, "count": count}
			for category, count in self.store.category_counts(window.start, window.end)
		]

	def combined(
		self,
		window: MonthWindow,
		*,
		page: int = 1,
		per_page: int = 10,
		search: str = "",
	) -> Dict[str, Any]:
		"""Run the four month queries concurrently.

		The first failure cancels the sub-queries that have not started yet and
		is re-raised; no partial payload is returned.
		"""
		if page < 1 or per_page < 1:
			raise ValueError("page and perPage must be >= 1")

		futures: Dict[str, Future] = {
			"transactions": self._executor.submit(
				self.list_transactions, page=page, per_page=per_page, search=search, window=window
			),
			"statistics": self._executor.submit(self.statistics, window),
			"barChart": self._executor.submit(self.bar_chart, window),
			"pieChart": self._executor.submit(self.pie_chart, window),
		}
		done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)

		for future in done:
			exc = future.exception()
			if exc is not None:
				for other in pending:
					other.cancel()
				logger.warning("Combined query for %04d-%02d failed", window.year, window.month)
				raise exc

		return {key: future.result() for key, future in futures.items()}
