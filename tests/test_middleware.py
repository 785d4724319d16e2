import pytest

from gym_retention.middleware import REDACTED, is_sensitive_field, sanitize


@pytest.mark.parametrize("name", ["password", "accessToken", "Authorization", "api_key", "card-number"])
def test_sensitive_fields_detected(name):
    assert is_sensitive_field(name)


def test_ordinary_fields_pass():
    assert not is_sensitive_field("riskLevel")
    assert not is_sensitive_field("memberId")


def test_sanitize_recurses():
    payload = {
        "search": "anna",
        "token": "abc",
        "nested": {"password": "x", "page": 2},
        "items": [{"secret": "s"}, {"id": 1}],
    }

    assert sanitize(payload) == {
        "search": "anna",
        "token": REDACTED,
        "nested": {"password": REDACTED, "page": 2},
        "items": [{"secret": REDACTED}, {"id": 1}],
    }


@pytest.mark.asyncio
async def test_process_time_header(client):
    response = await client.get("/live")

    assert "X-Process-Time" in response.headers
