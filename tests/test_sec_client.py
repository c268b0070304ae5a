"""Tests for the SEC EDGAR filing source."""

from types import SimpleNamespace

import pytest
import requests

from sec_quarters.errors import FetchError, NoFilingError
from sec_quarters.models import FilingDocument, FilingRef
from sec_quarters.sec_client import SECClient, is_annual_form, strip_html

TICKERS = {"0": {"cik_str": 320193, "ticker": "AAPL", "title": "Apple Inc."}}

SUBMISSIONS = {
    "filings": {
        "recent": {
            "accessionNumber": ["0000320193-25-000079", "0000320193-25-000073", "0000320193-25-000057", "0000320193-24-000123"],
            "form": ["8-K", "10-Q", "10-Q", "10-K"],
            "filingDate": ["2025-08-10", "2025-08-01", "2025-05-02", "2024-11-01"],
            "primaryDocument": ["a8k.htm", "aapl-20250628.htm", "aapl-20250329.htm", "aapl-20240928.htm"],
        }
    }
}


@pytest.fixture
def client():
    client = SECClient(user_agent="tests tests@example.com", max_chars=50)
    client.requested = []

    def fake_json(url, timeout=30):
        client.requested.append(url)
        if url.endswith("company_tickers.json"):
            return TICKERS
        return SUBMISSIONS

    client._request_json = fake_json
    return client


def test_form_classification():
    assert is_annual_form("10-K")
    assert is_annual_form("20-f")
    assert not is_annual_form("10-Q")


def test_resolve_cik(client):
    assert client.resolve_cik("aapl") == "0000320193"
    assert client.resolve_cik("320193") == "0000320193"
    with pytest.raises(NoFilingError):
        client.resolve_cik("ZZZZ")


def test_list_filings_filters_and_sorts(client):
    filings = client.list_filings("AAPL", "10-Q", limit=5)
    assert [f.accession_number for f in filings] == ["0000320193-25-000073", "0000320193-25-000057"]
    assert all(f.cik == "0000320193" for f in filings)
    assert client.list_filings("AAPL", "10-Q", limit=1)[0].filing_date == "2025-08-01"


def test_latest_filing_metadata_only(client):
    latest = client.get_latest_filing("AAPL", "10-Q")
    assert isinstance(latest, FilingRef)
    assert latest.accession_number == "0000320193-25-000073"
    assert latest.primary_document == "aapl-20250628.htm"


def test_latest_filing_with_text(client):
    client._request = lambda url, timeout=30: SimpleNamespace(
        text="<html><body><script>x()</script><p>Total   net sales</p><p>94,036</p></body></html>"
    )
    document = client.get_latest_filing("AAPL", "10-Q", metadata_only=False)
    assert isinstance(document, FilingDocument)
    assert "Total net sales" in document.full_text
    assert "x()" not in document.full_text
    assert len(document.full_text) <= 50


def test_no_filing_of_form_type(client):
    with pytest.raises(NoFilingError):
        client.get_latest_filing("AAPL", "6-K")


def test_submissions_cache_and_bypass(client):
    client.list_filings("AAPL", "10-Q")
    client.list_filings("AAPL", "10-Q")
    submissions_calls = [u for u in client.requested if "submissions" in u]
    assert len(submissions_calls) == 1

    client.list_filings("AAPL", "10-Q", use_cache=False)
    submissions_calls = [u for u in client.requested if "submissions" in u]
    assert len(submissions_calls) == 2


def test_submissions_404_is_no_filing(client):
    def not_found(url, timeout=30):
        if url.endswith("company_tickers.json"):
            return TICKERS
        response = requests.Response()
        response.status_code = 404
        raise requests.exceptions.HTTPError("404", response=response)

    client._request_json = not_found
    with pytest.raises(NoFilingError):
        client.list_filings("AAPL", "10-Q")


def test_network_failure_is_fetch_error(client):
    def offline(url, timeout=30):
        raise requests.exceptions.ConnectionError("offline")

    client._request_json = offline
    with pytest.raises(FetchError):
        client.list_filings("0000320193", "10-Q")


def test_filing_text_failures(client):
    ref = FilingRef(symbol="AAPL", form_type="10-Q", accession_number="0001", filing_date="2025-05-02", cik="320193")
    with pytest.raises(FetchError):
        client.get_filing_text(ref)

    ref = ref.model_copy(update={"primary_document": "doc.htm"})

    def offline(url, timeout=30):
        raise requests.exceptions.ConnectionError("offline")

    client._request = offline
    with pytest.raises(FetchError):
        client.get_filing_text(ref)

    client._request = lambda url, timeout=30: SimpleNamespace(text="<html><body> </body></html>")
    with pytest.raises(FetchError):
        client.get_filing_text(ref)


def test_strip_html_flattens_tables():
    html = """
    <div style="display:none">hidden</div>
    <table>
      <tr><th>Item</th><th>Q2 2025</th></tr>
      <tr><td>Revenue</td><td>$1,500</td></tr>
    </table>
    <p>After&nbsp;table</p>
    """
    text = strip_html(html)
    assert "Item\tQ2 2025" in text
    assert "Revenue\t$1,500" in text
    assert "hidden" not in text
    assert "After table" in text


@pytest.mark.integration
def test_live_latest_10q():
    from sec_quarters.sec_client import get_sec_client
    latest = get_sec_client().get_latest_filing("AAPL", "10-Q")
    assert latest.form_type == "10-Q"
    assert latest.accession_number
