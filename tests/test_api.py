import os
import sqlite3
import tempfile
import unittest
from unittest import mock

from store import StoreError, TransactionStore
from tests.insert_data import SAMPLE_TRANSACTIONS, create_database


class ApiTests(unittest.TestCase):
	def setUp(self) -> None:
		tmp = tempfile.TemporaryDirectory()
		self.addCleanup(tmp.cleanup)
		self.store = create_database(os.path.join(tmp.name, "transactions.db"))
		self.addCleanup(self.store.close)

		from app import create_app  # local import so the test store is injected

		self.app = create_app({"TESTING": True}, store=self.store)
		self.addCleanup(self.app.extensions["transaction_service"].close)
		self.client = self.app.test_client()

	def get_json(self, url: str, status: int = 200):
		resp = self.client.get(url)
		self.assertEqual(resp.status_code, status, resp.data)
		return resp.get_json()

	def test_health(self):
		self.assertEqual(self.get_json("/health"), {"status": "ok"})

	# -------------------------
	# Listing
	# -------------------------
	def test_list_defaults(self):
		data = self.get_json("/api/transactions")
		self.assertEqual(data["currentPage"], 1)
		self.assertEqual(data["totalCount"], len(SAMPLE_TRANSACTIONS))
		self.assertEqual(data["totalPages"], 1)
		first = data["transactions"][0]
		self.assertEqual(first["productTitle"], "Mens Casual Shirt")
		self.assertEqual(first["price"], 50.0)
		self.assertIs(first["sold"], True)
		self.assertEqual(first["dateOfSale"], "2022-03-05T00:00:00+00:00")

	def test_list_pagination(self):
		data = self.get_json("/api/transactions?page=3&perPage=4")
		self.assertEqual(data["currentPage"], 3)
		self.assertEqual(data["totalPages"], 3)
		self.assertEqual(len(data["transactions"]), 1)
		self.assertEqual(data["transactions"][0]["productTitle"], "New Year Hat")

		past_end = self.get_json("/api/transactions?page=4&perPage=4")
		self.assertEqual(past_end["transactions"], [])
		self.assertEqual(past_end["totalPages"], 3)

	def test_list_pages_cover_every_match_once(self):
		seen = []
		for page in (1, 2, 3):
			data = self.get_json(f"/api/transactions?page={page}&perPage=4")
			self.assertLessEqual(len(data["transactions"]), 4)
			seen.extend(t["id"] for t in data["transactions"])
		self.assertEqual(len(seen), len(SAMPLE_TRANSACTIONS))
		self.assertEqual(len(set(seen)), len(seen))

	def test_search_matches_price_text(self):
		data = self.get_json("/api/transactions?search=50")
		titles = [t["productTitle"] for t in data["transactions"]]
		self.assertEqual(titles[0], "Mens Casual Shirt")
		self.assertEqual(set(titles), {"Mens Casual Shirt", "Backpack", "Gold Ring"})
		self.assertEqual(data["totalCount"], 3)

	def test_search_is_case_insensitive_over_title_and_description(self):
		data = self.get_json("/api/transactions?search=SHIRT")
		self.assertEqual([t["productTitle"] for t in data["transactions"]], ["Mens Casual Shirt"])

		data = self.get_json("/api/transactions?search=solid%20STATE")
		self.assertEqual([t["productTitle"] for t in data["transactions"]], ["SSD"])

	def test_search_treats_like_wildcards_literally(self):
		self.assertEqual(self.get_json("/api/transactions?search=9_9")["totalCount"], 0)
		data = self.get_json("/api/transactions?search=100%25")
		self.assertEqual([t["productTitle"] for t in data["transactions"]], ["Rain Jacket"])

	def test_search_price_text_has_no_trailing_zeros(self):
		# Price 50 reads "50", never "50.00"; only whole hundreds contain "00".
		data = self.get_json("/api/transactions?search=00")
		self.assertEqual({t["productTitle"] for t in data["transactions"]}, {"Rain Jacket", "New Year Hat"})
		self.assertEqual(self.get_json("/api/transactions?search=0.0")["totalCount"], 0)
		self.assertEqual(self.get_json("/api/transactions?search=950.50")["totalCount"], 0)
		data = self.get_json("/api/transactions?search=950.5")
		self.assertEqual([t["productTitle"] for t in data["transactions"]], ["Gold Ring"])

	def test_date_of_sale_carries_utc_offset(self):
		data = self.get_json("/api/transactions?month=April&perPage=1")
		self.assertEqual(data["transactions"][0]["dateOfSale"], "2022-04-15T12:30:00+00:00")

	def test_search_without_matches(self):
		data = self.get_json("/api/transactions?search=no-such-product")
		self.assertEqual(data, {"transactions": [], "totalPages": 0, "currentPage": 1, "totalCount": 0})

	def test_list_scoped_to_month(self):
		data = self.get_json("/api/transactions?month=April")
		self.assertEqual(data["totalCount"], 3)
		data = self.get_json("/api/transactions?month=3&year=2021")
		self.assertEqual([t["productTitle"] for t in data["transactions"]], ["Old Stock"])

	def test_invalid_pagination_is_rejected(self):
		for query in ("page=0", "page=-1", "perPage=0", "perPage=abc"):
			with self.subTest(query=query):
				data = self.get_json(f"/api/transactions?{query}", status=400)
				self.assertEqual(data["status"], 400)
				self.assertIn("error", data)

	def test_oversized_page_is_capped(self):
		data = self.get_json("/api/transactions?perPage=500")
		self.assertEqual(len(data["transactions"]), len(SAMPLE_TRANSACTIONS))
		self.assertEqual(data["totalPages"], 1)

		from app import create_app

		app = create_app({"TESTING": True, "MAX_PER_PAGE": 4}, store=self.store)
		self.addCleanup(app.extensions["transaction_service"].close)
		resp = app.test_client().get("/api/transactions?perPage=500")
		self.assertEqual(resp.status_code, 200)
		data = resp.get_json()
		self.assertEqual(len(data["transactions"]), 4)
		self.assertEqual(data["totalPages"], 3)

	# -------------------------
	# Monthly reports
	# -------------------------
	def test_statistics_example(self):
		data = self.get_json("/api/statistics/March")
		self.assertEqual(data, {"totalAmount": 200.0, "totalSoldItems": 1, "totalNotSoldItems": 1})

	def test_statistics_uses_year_parameter(self):
		data = self.get_json("/api/statistics/March?year=2021")
		self.assertEqual(data, {"totalAmount": 25.0, "totalSoldItems": 1, "totalNotSoldItems": 0})

	def test_month_names_and_numbers_resolve_alike(self):
		expected = self.get_json("/api/statistics/March")
		for month in ("march", "MAR", "3", "03"):
			with self.subTest(month=month):
				self.assertEqual(self.get_json(f"/api/statistics/{month}"), expected)

	def test_bar_chart_example(self):
		data = self.get_json("/api/bar-chart/March")
		self.assertEqual(data["counts"], [1, 1, 0, 0, 0, 0, 0, 0, 0, 0])
		self.assertEqual(len(data["ranges"]), 10)
		self.assertEqual(data["ranges"][0], "0 - 100")
		self.assertEqual(data["ranges"][-1], "900 - above")

	def test_bar_chart_boundaries_are_closed_open(self):
		# 100 and 109 both land in [100, 200); 950.5 in [900, inf).
		data = self.get_json("/api/bar-chart/April")
		self.assertEqual(data["counts"], [0, 2, 0, 0, 0, 0, 0, 0, 0, 1])

	def test_pie_chart_example(self):
		data = self.get_json("/api/pie-chart/March")
		self.assertEqual(
			sorted(data, key=lambda d: d["_id"]),
			[{"_id": "A", "count": 1}, {"_id": "B", "count": 1}],
		)

	def test_empty_month(self):
		self.assertEqual(
			self.get_json("/api/statistics/June"),
			{"totalAmount": 0, "totalSoldItems": 0, "totalNotSoldItems": 0},
		)
		self.assertEqual(self.get_json("/api/bar-chart/June")["counts"], [0] * 10)
		self.assertEqual(self.get_json("/api/pie-chart/June"), [])

	def test_december_window_ends_at_new_year(self):
		data = self.get_json("/api/statistics/December")
		self.assertEqual(data["totalSoldItems"] + data["totalNotSoldItems"], 1)
		self.assertEqual(data["totalAmount"], 899.99)

	def test_aggregates_agree_for_every_month(self):
		for month in range(1, 13):
			with self.subTest(month=month):
				stats = self.get_json(f"/api/statistics/{month}")
				bars = self.get_json(f"/api/bar-chart/{month}")
				pie = self.get_json(f"/api/pie-chart/{month}")
				listed = self.get_json(f"/api/transactions?month={month}")
				matches = listed["totalCount"]
				self.assertEqual(stats["totalSoldItems"] + stats["totalNotSoldItems"], matches)
				self.assertEqual(sum(bars["counts"]), matches)
				self.assertEqual(sum(p["count"] for p in pie), matches)

	def test_unknown_month_is_rejected(self):
		for url in ("/api/statistics/Smarch", "/api/bar-chart/13", "/api/pie-chart/0", "/api/combined/nope"):
			with self.subTest(url=url):
				data = self.get_json(url, status=400)
				self.assertIn("month", data["error"].lower())

	def test_invalid_year_is_rejected(self):
		self.get_json("/api/statistics/March?year=twenty", status=400)

	# -------------------------
	# Combined
	# -------------------------
	def test_combined_matches_dedicated_endpoints(self):
		combined = self.get_json("/api/combined/April?perPage=2")
		self.assertEqual(set(combined), {"transactions", "statistics", "barChart", "pieChart"})
		self.assertEqual(combined["transactions"], self.get_json("/api/transactions?month=April&perPage=2"))
		self.assertEqual(combined["statistics"], self.get_json("/api/statistics/April"))
		self.assertEqual(combined["barChart"], self.get_json("/api/bar-chart/April"))
		self.assertEqual(combined["pieChart"], self.get_json("/api/pie-chart/April"))

	def test_combined_accepts_month_names(self):
		self.assertEqual(self.get_json("/api/combined/04"), self.get_json("/api/combined/april"))

	def test_combined_fails_as_a_whole(self):
		with mock.patch.object(self.store, "category_counts", side_effect=StoreError("connection lost")):
			data = self.get_json("/api/combined/March", status=500)
		self.assertEqual(data, {"error": "Query failed", "status": 500})

	# -------------------------
	# Errors and formats
	# -------------------------
	def test_store_failure_is_reported_generically(self):
		def connect():
			raise sqlite3.OperationalError("unable to open database file")

		from app import create_app

		broken = TransactionStore(connect, placeholder="?")
		app = create_app({"TESTING": True}, store=broken)
		self.addCleanup(app.extensions["transaction_service"].close)
		client = app.test_client()
		for url in ("/api/transactions", "/api/statistics/March", "/api/bar-chart/March", "/api/pie-chart/March"):
			with self.subTest(url=url):
				resp = client.get(url)
				self.assertEqual(resp.status_code, 500)
				self.assertEqual(resp.get_json()["error"], "Query failed")

	def test_unknown_route(self):
		data = self.get_json("/api/nothing-here", status=404)
		self.assertEqual(data["error"], "Not found")

	def test_xml_formatting(self):
		resp = self.client.get("/api/statistics/March?format=xml")
		self.assertEqual(resp.status_code, 200)
		self.assertIn("application/xml", resp.headers.get("Content-Type", ""))
		self.assertIn(b"<totalSoldItems>1</totalSoldItems>", resp.data)

	def test_unknown_format(self):
		data = self.get_json("/api/statistics/March?format=csv", status=400)
		self.assertIn("format", data["error"])


if __name__ == "__main__":
	unittest.main()
