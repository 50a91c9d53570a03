import unittest

import httpx

from db.models import Product
from services.product_feed import (
    NO_SIZES,
    PLACEHOLDER_PRODUCTS,
    ProductFeed,
    RowParseError,
    facets_for,
    filter_products,
    parse_price,
    parse_product_row,
)

PRODUCT_ROWS = [
    ["Cement M400", "50 kg", "320", "", "Building materials", "Dry mixes", "Portland cement", "Eurocement"],
    ["", "", "100"],  # blank name, dropped silently
    ["Red brick", "", "15,50", "brick.png", "Building materials", "Masonry", "", "Kirpich"],
    ["Hammer drill", "", "a lot", "", "Tools"],  # bad price, logged and skipped
    ["Sand", "1 t", "1 200", "", "Building materials", "Dry mixes", "River sand", "Eurocement"],
]

PARTNER_ROWS = [
    ["Eurocement", "Moscow, Lenina 1", "+7 495 000-00-00"],
    [""],
    ["Kirpich", "Tver"],
]


def sheets_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if "Materials" in str(request.url):
            return httpx.Response(200, json={"values": PRODUCT_ROWS})
        return httpx.Response(200, json={"values": PARTNER_ROWS})

    return handler


def make_feed(handler, retries=3, api_key="key", spreadsheet_id="sheet"):
    return ProductFeed(
        api_key,
        spreadsheet_id,
        products_sheet="Materials",
        partners_sheet="Partners",
        retries=retries,
        backoff=0,
        transport=httpx.MockTransport(handler),
    )


class ParsingTestCase(unittest.TestCase):
    def test_parse_price(self):
        self.assertEqual(parse_price("320"), 320.0)
        self.assertEqual(parse_price("1 234,50"), 1234.5)
        self.assertEqual(parse_price("1 200"), 1200.0)
        self.assertEqual(parse_price(""), 0.0)
        self.assertEqual(parse_price(None), 0.0)
        for bad in ("abc", "-5", "nan", "inf", "-inf"):
            with self.assertRaises(ValueError):
                parse_price(bad)

    def test_parse_product_row(self):
        product = parse_product_row(PRODUCT_ROWS[0], 0)
        self.assertIsInstance(product, Product)
        self.assertEqual(product.id, "row-2")
        self.assertEqual(product.price, 320.0)
        self.assertEqual(product.sizes, "50 kg")
        self.assertEqual(product.klass, "Dry mixes")
        self.assertEqual(product.manufacturer, "Eurocement")

        short = parse_product_row(["Glue", "", ""], 5)
        self.assertEqual(short.id, "row-7")
        self.assertEqual(short.price, 0.0)
        self.assertEqual(short.sizes, NO_SIZES)
        self.assertIsNone(short.klass)
        self.assertIsNone(short.manufacturer)

    def test_parse_product_row_errors(self):
        self.assertEqual(parse_product_row(["  "], 3), RowParseError(5, "empty name"))
        bad = parse_product_row(PRODUCT_ROWS[3], 3)
        self.assertIsInstance(bad, RowParseError)
        self.assertEqual(bad.row_number, 5)
        self.assertIn("price", bad.reason)

    def test_filter_products_and_facets(self):
        products = [p for p in (parse_product_row(r, i) for i, r in enumerate(PRODUCT_ROWS))
                    if isinstance(p, Product)]

        self.assertEqual([p.name for p in filter_products(products, "SAND")], ["Sand"])
        self.assertEqual([p.name for p in filter_products(products, "portland")], ["Cement M400"])
        self.assertEqual(
            [p.name for p in filter_products(products, klass="Dry mixes")], ["Cement M400", "Sand"]
        )
        self.assertEqual(
            [p.name for p in filter_products(products, manufacturer="Kirpich")], ["Red brick"]
        )
        self.assertEqual(filter_products(products, category="Tools"), [])
        self.assertEqual(len(filter_products(products)), 3)

        facets = facets_for(products)
        self.assertEqual(facets.manufacturers, ("Eurocement", "Kirpich"))
        self.assertEqual(facets.classes, ("Dry mixes", "Masonry"))

    def test_placeholder_catalog(self):
        self.assertEqual(len(PLACEHOLDER_PRODUCTS), 10)
        self.assertEqual(len({p.id for p in PLACEHOLDER_PRODUCTS}), 10)


class ProductFeedTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_list_products_skips_bad_rows(self):
        calls = []
        feed = make_feed(sheets_handler(calls))
        products = await feed.list_products()
        self.assertEqual([p.name for p in products], ["Cement M400", "Red brick", "Sand"])
        self.assertEqual(products[1].price, 15.5)
        self.assertEqual(calls[0].url.params["key"], "key")

    async def test_list_products_with_filters(self):
        feed = make_feed(sheets_handler([]))
        products = await feed.list_products(category="Building materials", klass="Masonry")
        self.assertEqual([p.name for p in products], ["Red brick"])

    async def test_filter_facets(self):
        feed = make_feed(sheets_handler([]))
        facets = await feed.list_filter_facets(klass="Dry mixes")
        self.assertEqual(facets.manufacturers, ("Eurocement",))
        self.assertEqual(facets.classes, ("Dry mixes",))

    async def test_list_partners(self):
        calls = []
        feed = make_feed(sheets_handler(calls))
        partners = await feed.list_partners()
        self.assertEqual([(p.id, p.name) for p in partners], [("P1", "Eurocement"), ("P3", "Kirpich")])
        self.assertIsNone(partners[1].contact)
        self.assertIn("Partners", str(calls[0].url))

    async def test_retries_then_succeeds(self):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"values": PRODUCT_ROWS[:1]})

        products = await make_feed(flaky, retries=3).list_products()
        self.assertEqual(len(attempts), 3)
        self.assertEqual([p.name for p in products], ["Cement M400"])

    async def test_gives_up_after_retries(self):
        attempts = []

        def down(request):
            attempts.append(request)
            raise httpx.ConnectError("unreachable", request=request)

        feed = make_feed(down, retries=2)
        self.assertEqual(await feed.list_products(), [])
        self.assertEqual(await feed.list_partners(), [])
        self.assertEqual(len(attempts), 4)

    async def test_malformed_payload_reads_as_empty(self):
        feed = make_feed(lambda request: httpx.Response(200, json=["not", "a", "dict"]))
        self.assertEqual(await feed.list_products(), [])

        broken = make_feed(lambda request: httpx.Response(200, text="<html>"), retries=1)
        self.assertEqual(await broken.list_products(), [])

    async def test_unconfigured_feed_makes_no_requests(self):
        calls = []
        feed = make_feed(sheets_handler(calls), api_key=None)
        self.assertFalse(feed.configured)
        self.assertEqual(await feed.list_products(), [])
        self.assertEqual(await feed.list_partners(), [])
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
