import pytest
import requests

from catmatch.catalog import WooCommerceCatalog, find_category_by_name, normalize_name
from catmatch.errors import AuthorizationError, ConfigError, PersistenceError, TransportError
from catmatch.models import Category

from conftest import FakeResponse

SENTINEL = 15


class _Session:
    """Routes (method, path) to canned responses and records every call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def request(self, method, url, **kwargs):
        path = url.split("/wp-json/wc/v3/", 1)[1]
        self.calls.append((method, path, kwargs))
        handler = self.routes.get((method, path))
        if handler is None:
            raise AssertionError(f"Unexpected request: {method} {path}")
        return handler(kwargs) if callable(handler) else handler


def _catalog(routes):
    session = _Session(routes)
    catalog = WooCommerceCatalog("https://shop.example/", "ck", "cs", session=session)
    return catalog, session


def _sentinel_route():
    return FakeResponse(200, [{"id": SENTINEL, "name": "Uncategorized", "slug": "uncategorized"}])


def test_missing_credentials_are_config_errors():
    with pytest.raises(ConfigError):
        WooCommerceCatalog("", "ck", "cs")
    with pytest.raises(ConfigError):
        WooCommerceCatalog("https://shop.example", "ck", "")


def test_api_url_is_built_once():
    catalog = WooCommerceCatalog("https://shop.example/wp-json/wc/v3", "ck", "cs")
    assert catalog.api_url == "https://shop.example/wp-json/wc/v3"


def test_count_reads_total_header():
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products"): FakeResponse(200, [{"id": 1}], headers={"X-WP-Total": "42"}),
        }
    )
    assert catalog.count_uncategorized_items() == 42
    method, path, kwargs = session.calls[-1]
    assert kwargs["params"]["category"] == SENTINEL
    assert kwargs["params"]["status"] == "publish"
    assert kwargs["auth"] == ("ck", "cs")


def test_list_uncategorized_items_maps_rows():
    rows = [
        {"id": 4, "name": "Steel Rake", "description": "", "short_description": "Rakes leaves", "categories": [{"id": SENTINEL}]},
    ]
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products"): FakeResponse(200, rows),
        }
    )
    items = catalog.list_uncategorized_items(5, 10)
    assert items[0].title == "Steel Rake"
    assert items[0].description == "Rakes leaves"
    assert items[0].category_ids == frozenset({SENTINEL})
    params = session.calls[-1][2]["params"]
    assert params["offset"] == 10
    assert params["per_page"] == 5
    assert params["order"] == "asc"


def test_unauthorized_response_is_authorization_error():
    catalog, _ = _catalog({("GET", "products/categories"): FakeResponse(401, {"code": "woocommerce_rest_cannot_view"})})
    with pytest.raises(AuthorizationError):
        catalog.list_categories()


def test_missing_sentinel_category_is_config_error():
    catalog, _ = _catalog({("GET", "products/categories"): FakeResponse(200, [])})
    with pytest.raises(ConfigError):
        catalog.count_uncategorized_items()


def test_network_failures_split_by_read_and_write():
    def boom(_kwargs):
        raise requests.ConnectionError("connection reset")

    catalog, _ = _catalog({("GET", "products/3"): boom, ("PUT", "products/3"): boom})
    with pytest.raises(TransportError):
        catalog.get_item(3)
    with pytest.raises(PersistenceError):
        catalog.request_json("PUT", "products/3", write=True, json={})


def test_assign_category_adds_and_drops_sentinel():
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products/7"): FakeResponse(200, {"id": 7, "name": "Mug", "categories": [{"id": SENTINEL}, {"id": 30}]}),
            ("PUT", "products/7"): FakeResponse(200, {"id": 7}),
        }
    )
    catalog.assign_category(7, 20)
    method, path, kwargs = session.calls[-1]
    assert (method, path) == ("PUT", "products/7")
    assert kwargs["json"] == {"categories": [{"id": 20}, {"id": 30}]}


def test_assign_category_is_a_noop_when_already_assigned():
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products/7"): FakeResponse(200, {"id": 7, "name": "Mug", "categories": [{"id": 20}]}),
        }
    )
    catalog.assign_category(7, 20)
    assert all(method != "PUT" for method, _path, _kwargs in session.calls)


def test_list_categories_paginates_and_sorts():
    pages = {
        1: FakeResponse(200, [{"id": 9, "name": "Toys", "slug": "toys"}], headers={"X-WP-TotalPages": "2"}),
        2: FakeResponse(200, [{"id": 3, "name": "Bath", "slug": "bath"}], headers={"X-WP-TotalPages": "2"}),
    }
    catalog, _ = _catalog({("GET", "products/categories"): lambda kwargs: pages[kwargs["params"]["page"]]})
    assert [category.id for category in catalog.list_categories()] == [3, 9]


def test_ensure_category_reuses_existing_name():
    catalog, session = _catalog(
        {("GET", "products/categories"): FakeResponse(200, [{"id": 5, "name": "Unmatched", "slug": "unmatched"}])}
    )
    assert catalog.ensure_category("unmatched").id == 5
    assert all(method == "GET" for method, _path, _kwargs in session.calls)


def test_ensure_category_creates_missing():
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): FakeResponse(200, []),
            ("POST", "products/categories"): FakeResponse(201, {"id": 99, "name": "Unmatched", "slug": "unmatched"}),
        }
    )
    created = catalog.ensure_category(" Unmatched ")
    assert created.id == 99
    assert session.calls[-1][2]["json"] == {"name": "Unmatched"}


def test_find_category_by_name_normalizes():
    vocab = [Category(1, "Home  &  Garden"), Category(2, "Café")]
    assert find_category_by_name(vocab, "home & garden").id == 1
    assert find_category_by_name(vocab, "CAFÉ").id == 2
    assert find_category_by_name(vocab, "  ") is None
    assert normalize_name("  Garden\tTools ") == "garden tools"


def test_non_json_category_page_is_transport_error():
    catalog, _ = _catalog(
        {("GET", "products/categories"): FakeResponse(200, text="<html>Briefly unavailable for maintenance</html>")}
    )
    with pytest.raises(TransportError, match="non-JSON"):
        catalog.list_categories()


def test_count_without_header_and_non_json_body_is_transport_error():
    catalog, _ = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products"): FakeResponse(200, text="<html>maintenance</html>"),
        }
    )
    with pytest.raises(TransportError):
        catalog.count_uncategorized_items()


def test_count_with_garbled_total_header_is_transport_error():
    catalog, _ = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products"): FakeResponse(200, [], headers={"X-WP-Total": "many"}),
        }
    )
    with pytest.raises(TransportError):
        catalog.count_uncategorized_items()


def test_pool_includes_products_that_also_carry_other_categories():
    rows = [{"id": 8, "name": "Lamp", "categories": [{"id": SENTINEL}, {"id": 30}]}]
    catalog, session = _catalog(
        {
            ("GET", "products/categories"): _sentinel_route(),
            ("GET", "products"): FakeResponse(200, rows),
            ("GET", "products/8"): FakeResponse(200, rows[0]),
            ("PUT", "products/8"): FakeResponse(200, {"id": 8}),
        }
    )
    assert [item.id for item in catalog.list_uncategorized_items(5, 0)] == [8]
    catalog.assign_category(8, 30)
    assert session.calls[-1][2]["json"] == {"categories": [{"id": 30}]}
