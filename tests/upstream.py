"""Canned upstream responses for the gateway, speech and identity services."""

from typing import Callable, Dict, List, Optional, Union

import httpx

Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":" there"}}]}\n\n'
    b"data: [DONE]\n\n"
)


class UpstreamStub:
    """Answers outbound httpx requests from canned responses and records them."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Responder] = {}

    def on(self, url_fragment: str, responder: Responder) -> None:
        self.routes[url_fragment] = responder

    def calls(self, url_fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if url_fragment in str(r.url)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for fragment, responder in self.routes.items():
            if fragment in str(request.url):
                return responder(request) if callable(responder) else responder
        return httpx.Response(404, json={"error": f"no stub for {request.url}"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def completion(content: str, **message_fields) -> httpx.Response:
    """A non-streaming chat completion body."""
    message = {"role": "assistant", "content": content, **message_fields}
    return httpx.Response(200, json={"choices": [{"index": 0, "message": message}]})


class ChunkedStream(httpx.AsyncByteStream):
    """Hands the body over in small pieces, the way a live SSE socket does."""

    def __init__(self, body: bytes, chunk_size: int = 7) -> None:
        self.body = body
        self.chunk_size = chunk_size

    async def __aiter__(self):
        for start in range(0, len(self.body), self.chunk_size):
            yield self.body[start : start + self.chunk_size]


def event_stream(
    body: bytes = SSE_BODY, headers: Optional[Dict[str, str]] = None
) -> Callable[[httpx.Request], httpx.Response]:
    """A streaming responder; each request gets its own unread stream."""
    response_headers = {"Content-Type": "text/event-stream", **(headers or {})}

    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers=response_headers, stream=ChunkedStream(body))

    return respond
