"""Shared fakes for upstream HTTP services."""

import json

import httpx

EMBEDDING_URL = "http://embeddings.test/v1/embeddings"
EMBEDDING_TERMS = ("apple", "banana", "cherry")


def fake_embedding(text: str) -> list:
    """Count-of-term vector with a constant first component so it is never zero."""
    lowered = text.lower()
    return [1.0] + [float(lowered.count(term)) for term in EMBEDDING_TERMS]


def embedding_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={
            "data": [
                {"index": i, "embedding": fake_embedding(text)}
                for i, text in enumerate(body["input"])
            ]
        },
    )


def sse_body(*payloads) -> bytes:
    """Encode payloads as an upstream SSE body terminated by [DONE]."""
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def dify_handler(*answers: str, status_code: int = 200):
    """MockTransport handler answering Dify chat-messages with the given fragments."""

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"message": "upstream failure"})
        body = sse_body(*({"event": "message", "answer": a} for a in answers))
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    return handler
