import os

import pytest
import requests

MS_URL = os.getenv("MS_URL", "http://localhost:8000")
E2E_TIMEOUT = float(os.getenv("E2E_TIMEOUT", "60"))


class Client:
    """Talks to a deployed gateway the way the Docker CLI does."""

    def _url(self, path):
        assert path[0] == "/", "URL must start with /"
        return f"{MS_URL}{path}"

    def get(self, path, **kwargs):
        kwargs.setdefault("timeout", E2E_TIMEOUT)
        kwargs.setdefault("allow_redirects", False)
        return requests.get(self._url(path), **kwargs)

    def bearer_token(self, scope):
        response = self.get("/v2/auth", params={"scope": scope})
        response.raise_for_status()
        return response.json()["token"]


@pytest.fixture(scope="session")
def client():
    return Client()
