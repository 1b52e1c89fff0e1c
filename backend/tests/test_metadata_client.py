"""OMDb client error mapping, using httpx's mock transport."""
import asyncio

import httpx

from shelfscout.services.metadata_client import OmdbMetadataClient, clean_poster, parse_year
from shelfscout.services.result import Err, ErrorKind, Ok


def client_for(handler, api_key="test-key"):
    return OmdbMetadataClient(
        api_key=api_key,
        base_url="https://omdb.test/",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def search(client, query="Christopher Nolan"):
    return asyncio.run(client.search_by_text(query))


def test_search_parses_titles():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={
            "Response": "True",
            "Search": [
                {"imdbID": "tt0482571", "Title": "The Prestige", "Year": "2006", "Poster": "https://img/p.jpg"},
                {"imdbID": "tt0944947", "Title": "Game of Thrones", "Year": "2011–2019", "Poster": "N/A"},
                {"Title": "No id"},
            ],
        })

    client = client_for(handler)
    result = search(client)

    assert isinstance(result, Ok)
    titles = result.value.titles
    assert [(t.imdb_id, t.year, t.poster_url) for t in titles] == [
        ("tt0482571", 2006, "https://img/p.jpg"),
        ("tt0944947", 2011, None),
    ]
    assert seen["s"] == "Christopher Nolan"
    assert seen["apikey"] == "test-key"
    assert client.request_count == 1


def test_not_found_is_an_empty_result():
    client = client_for(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Movie not found!"}))
    result = search(client)
    assert isinstance(result, Ok)
    assert result.value.titles == []


def test_rate_limit_message():
    client = client_for(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Request limit reached!"}))
    result = search(client)
    assert isinstance(result, Err)
    assert result.kind == ErrorKind.RATE_LIMITED


def test_rate_limit_status():
    client = client_for(lambda request: httpx.Response(401, text='{"Response":"False","Error":"Request limit reached!"}'))
    assert search(client).kind == ErrorKind.RATE_LIMITED


def test_http_error():
    client = client_for(lambda request: httpx.Response(503, text="unavailable"))
    result = search(client)
    assert isinstance(result, Err)
    assert result.kind == ErrorKind.HTTP


def test_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert search(client_for(handler)).kind == ErrorKind.NETWORK


def test_invalid_json():
    client = client_for(lambda request: httpx.Response(200, text="<html>oops</html>"))
    assert search(client).kind == ErrorKind.INVALID_RESPONSE


def test_missing_api_key_makes_no_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = client_for(handler, api_key="")
    assert search(client).kind == ErrorKind.NOT_CONFIGURED
    assert calls == []


def test_get_details():
    client = client_for(lambda request: httpx.Response(200, json={"Response": "True", "imdbID": "tt0482571", "Director": "Christopher Nolan"}))
    result = asyncio.run(client.get_details("tt0482571"))
    assert isinstance(result, Ok)
    assert result.value["Director"] == "Christopher Nolan"

    missing = client_for(lambda request: httpx.Response(200, json={"Response": "False", "Error": "Incorrect IMDb ID."}))
    assert asyncio.run(missing.get_details("tt0")).kind == ErrorKind.INVALID_RESPONSE


def test_helpers():
    assert parse_year("1999") == 1999
    assert parse_year("N/A") is None
    assert parse_year(None) is None
    assert clean_poster("N/A") is None
    assert clean_poster("") is None
