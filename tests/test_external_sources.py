from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest

from productcheck.errors import SourceFailureError, SourceTimeoutError
from productcheck.sources.fda import FDASource
from productcheck.sources.nafdac import NafdacSource
from productcheck.sources.openfoodfacts import OpenFoodFactsSource


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("GET", "https://example.test")
            raise httpx.HTTPStatusError("error", request=request, response=httpx.Response(self.status_code, request=request))

    def json(self):
        return self._payload


class FakeClient:
    def __init__(self, *responses, delay=0.0, error=None):
        self.responses = list(responses)
        self.delay = delay
        self.error = error
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def get(self, url, params=None, **kwargs):
        self.calls.append((url, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


GREENBOOK_HTML = """
<table>
  <tr><th>Product</th><th>Applicant</th><th>Reg. No.</th><th>Approved</th></tr>
  <tr><td><a href="/p/1">Emzor Paracetamol  Tablets</a></td><td>Emzor Pharmaceutical</td><td>04-0235</td><td>2019-03-12</td></tr>
  <tr><td>Peak Milk</td><td>FrieslandCampina WAMCO</td><td>01-0234</td></tr>
  <tr><td>--</td><td>n/a</td><td>n/a</td></tr>
</table>
"""

OFF_SEARCH_PAYLOAD = {
    "products": [
        {"code": "3017620422003", "product_name": "Nutella", "brands": "Ferrero", "nutriscore_grade": "e"},
        {"code": "5000159407236", "product_name": "Milo", "brands": "Nestle", "nutriscore_grade": "unknown"},
        {"brands": "Nobody"},
    ]
}


@pytest.mark.asyncio
async def test_openfoodfacts_search_maps_products():
    client = FakeClient(FakeResponse(OFF_SEARCH_PAYLOAD))
    source = OpenFoodFactsSource("https://off.test/", page_size=3)

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=client):
        products = await source.quick_search("nut")

    assert [product.name for product in products] == ["Nutella", "Milo"]
    assert products[0].id == "3017620422003"
    assert products[0].brand == "Ferrero"
    assert products[0].nutri_score == "E"
    assert products[1].nutri_score is None
    assert {product.source for product in products} == {"openfoodfacts"}
    assert {product.confidence for product in products} == {0.8}
    url, params = client.calls[0]
    assert url == "https://off.test/cgi/search.pl"
    assert params["search_terms"] == "nut"
    assert params["page_size"] == 3


@pytest.mark.asyncio
async def test_openfoodfacts_validates_barcode():
    payload = {"status": 1, "product": {"product_name": "Nutella", "brands": "Ferrero"}}
    client = FakeClient(FakeResponse(payload))
    source = OpenFoodFactsSource("https://off.test")

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=client):
        result = await source.validate("3017620422003")

    assert result.found
    assert result.confidence == 0.8
    assert result.product.id == "3017620422003"
    assert client.calls[0][0] == "https://off.test/api/v0/product/3017620422003.json"


@pytest.mark.asyncio
async def test_openfoodfacts_unknown_barcode_falls_back_to_name():
    client = FakeClient(
        FakeResponse({"status": 0}),
        FakeResponse({"products": [{"code": "1", "product_name": "Peak Milk"}]}),
    )
    source = OpenFoodFactsSource("https://off.test")

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=client):
        result = await source.validate("4006381333931", "Peak Milk")

    assert result.found
    assert result.confidence == 0.5
    assert client.calls[1][1]["search_terms"] == "Peak Milk"


@pytest.mark.asyncio
async def test_openfoodfacts_unknown_barcode_without_name_is_not_found():
    client = FakeClient(FakeResponse({"status": 0}))
    source = OpenFoodFactsSource("https://off.test")

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=client):
        result = await source.validate("4006381333931")

    assert not result.found
    assert result.sources[0].status == "success"
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_fda_no_match_is_empty_not_an_error():
    client = FakeClient(FakeResponse({"error": {"code": "NOT_FOUND"}}, status_code=404))
    source = FDASource("https://fda.test")

    with patch("productcheck.sources.fda.httpx.AsyncClient", return_value=client):
        result = await source.validate("Unobtainium")

    assert not result.found
    assert client.calls[0][1]["search"] == 'brand_name:"Unobtainium"'


@pytest.mark.asyncio
async def test_fda_search_maps_ndc_entries():
    payload = {
        "results": [
            {"product_ndc": "0573-0133", "brand_name": "Advil", "labeler_name": "Haleon"},
            {"product_id": "abc", "generic_name": "ibuprofen"},
        ]
    }
    client = FakeClient(FakeResponse(payload))
    source = FDASource("https://fda.test", limit=2)

    with patch("productcheck.sources.fda.httpx.AsyncClient", return_value=client):
        products = await source.quick_search("advil")

    assert [product.name for product in products] == ["Advil", "ibuprofen"]
    assert products[0].id == "0573-0133"
    assert products[0].brand == "Haleon"
    assert products[0].category == "medication"


@pytest.mark.asyncio
async def test_quick_search_degrades_to_empty_on_transport_error():
    client = FakeClient(error=httpx.ConnectError("refused"))
    source = OpenFoodFactsSource("https://off.test")

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=client):
        assert await source.quick_search("milo") == []


@pytest.mark.asyncio
async def test_validate_raises_on_transport_error():
    client = FakeClient(error=httpx.ConnectError("refused"))
    source = FDASource("https://fda.test")

    with patch("productcheck.sources.fda.httpx.AsyncClient", return_value=client):
        with pytest.raises(SourceFailureError) as excinfo:
            await source.validate("Advil")

    assert excinfo.value.source == "fda"


@pytest.mark.asyncio
async def test_timeout_budget_applies_to_both_paths():
    source = OpenFoodFactsSource("https://off.test", timeout_budget_ms=20)

    with patch("productcheck.sources.openfoodfacts.httpx.AsyncClient", return_value=FakeClient(delay=0.5)):
        assert await source.quick_search("milo") == []
        with pytest.raises(SourceTimeoutError):
            await source.validate("milo")


def test_category_coverage():
    off = OpenFoodFactsSource()
    fda = FDASource()

    assert off.covers(None)
    assert off.covers("Beverages")
    assert not off.covers("prescription drug")
    assert fda.covers("Vitamin supplements")
    assert not fda.covers("skin care")
    assert NafdacSource().covers("prescription drug")
    assert NafdacSource().covers("skin care")


@pytest.mark.asyncio
async def test_nafdac_search_maps_registry_rows():
    client = FakeClient(FakeResponse(text=GREENBOOK_HTML))
    source = NafdacSource("https://greenbook.test/", limit=5)

    with patch("productcheck.sources.nafdac.httpx.AsyncClient", return_value=client):
        products = await source.quick_search("paracetamol")

    assert [product.name for product in products] == ["Emzor Paracetamol Tablets", "Peak Milk"]
    assert [product.id for product in products] == ["04-0235", "01-0234"]
    assert products[0].brand == "Emzor Pharmaceutical"
    assert products[0].category == "medication"
    assert products[1].category is None
    assert {product.source for product in products} == {"nafdac"}
    assert all(product.verified for product in products)
    url, params = client.calls[0]
    assert url == "https://greenbook.test/Search"
    assert params == {"searchTerm": "paracetamol"}


@pytest.mark.asyncio
async def test_nafdac_validate_takes_first_row_and_keeps_the_rest():
    client = FakeClient(FakeResponse(text=GREENBOOK_HTML))
    source = NafdacSource("https://greenbook.test")

    with patch("productcheck.sources.nafdac.httpx.AsyncClient", return_value=client):
        result = await source.validate("4006381333931", "Emzor Paracetamol")

    assert result.found and result.verified
    assert result.product.name == "Emzor Paracetamol Tablets"
    assert result.display_confidence == 80
    assert [item.name for item in result.alternatives] == ["Peak Milk"]
    assert client.calls[0][1] == {"searchTerm": "Emzor Paracetamol"}


@pytest.mark.asyncio
async def test_nafdac_empty_page_or_404_is_not_found():
    client = FakeClient(FakeResponse(text="<p>No record found</p>"), FakeResponse(status_code=404))
    source = NafdacSource("https://greenbook.test")

    with patch("productcheck.sources.nafdac.httpx.AsyncClient", return_value=client):
        first = await source.validate("Unknown Balm")
        second = await source.validate("Unknown Balm")

    assert not first.found
    assert not second.found
    assert second.sources[0].status == "success"


@pytest.mark.asyncio
async def test_nafdac_server_error_fails_validation():
    client = FakeClient(FakeResponse(status_code=503))
    source = NafdacSource("https://greenbook.test")

    with patch("productcheck.sources.nafdac.httpx.AsyncClient", return_value=client):
        with pytest.raises(SourceFailureError) as excinfo:
            await source.validate("Peak Milk")

    assert excinfo.value.source == "nafdac"
