import httpx

from gateway.services.registry_gateway_service import relay_response


class RecordingStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.close_calls = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.close_calls += 1


async def test_relay_closes_upstream_once_after_body():
    stream = RecordingStream([b"layer-", b"data"])
    upstream = httpx.Response(200, headers={"Content-Length": "10"}, stream=stream)

    relay = relay_response(upstream)
    body = b"".join([chunk async for chunk in relay.body_iterator])

    assert body == b"layer-data"
    assert relay.background is None
    assert upstream.is_closed
    assert stream.close_calls == 1


async def test_relay_closes_upstream_when_client_goes_away():
    stream = RecordingStream([b"first", b"second"])
    upstream = httpx.Response(200, stream=stream)

    relay = relay_response(upstream)
    iterator = relay.body_iterator
    assert await iterator.__anext__() == b"first"
    await iterator.aclose()

    assert upstream.is_closed
    assert stream.close_calls == 1
