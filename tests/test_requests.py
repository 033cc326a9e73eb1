# =============================================================================
# Unit Tests: Request Models
# =============================================================================

from __future__ import annotations

import pytest
from pydantic import ValidationError

from hybrid_chat.models.requests import (
    MAX_ATTACHMENT_BYTES,
    ChatRequest,
    IngestDocumentRequest,
)


def _attachment(**overrides) -> dict:
    attachment = {
        "id": "a1",
        "name": "trace.txt",
        "mimeType": "text/plain",
        "size": 12,
        "dataUrl": "data:text/plain;base64,aGVsbG8=",
    }
    attachment.update(overrides)
    return attachment


class TestChatRequest:
    def test_minimal_request(self):
        request = ChatRequest.model_validate({"question": "  What is a retry budget?  "})
        assert request.question == "What is a retry budget?"
        assert request.top_k is None
        assert request.history == ()
        assert request.attachments == ()

    def test_camel_case_and_snake_case_accepted(self):
        assert ChatRequest.model_validate({"question": "q", "topK": 3}).top_k == 3
        assert ChatRequest(question="q", top_k=3).top_k == 3

    def test_blank_question_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"question": "   "})

    def test_question_length_limit(self):
        ChatRequest.model_validate({"question": "x" * 2000})
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"question": "x" * 2001})

    @pytest.mark.parametrize("top_k", [0, 21])
    def test_top_k_range(self, top_k):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"question": "q", "topK": top_k})

    def test_history_limit(self):
        turn = {"role": "user", "content": "earlier"}
        ChatRequest.model_validate({"question": "q", "history": [turn] * 50})
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"question": "q", "history": [turn] * 51})

    def test_history_role_and_content_checked(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate(
                {"question": "q", "history": [{"role": "system", "content": "x"}]}
            )
        with pytest.raises(ValidationError):
            ChatRequest.model_validate(
                {"question": "q", "history": [{"role": "user", "content": "  "}]}
            )

    def test_attachments(self):
        request = ChatRequest.model_validate({"question": "q", "attachments": [_attachment()]})
        assert request.attachments[0].mime_type == "text/plain"

        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"question": "q", "attachments": [_attachment()] * 5})

    def test_attachment_must_be_data_url(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate(
                {"question": "q", "attachments": [_attachment(dataUrl="https://x/y.txt")]}
            )

    def test_attachment_size_limit(self):
        with pytest.raises(ValidationError):
            ChatRequest.model_validate(
                {"question": "q", "attachments": [_attachment(size=MAX_ATTACHMENT_BYTES + 1)]}
            )

    def test_request_is_immutable(self):
        request = ChatRequest.model_validate({"question": "q"})
        with pytest.raises(ValidationError):
            request.question = "changed"


class TestIngestDocumentRequest:
    def _payload(self, **document):
        doc = {"externalId": "guide", "title": "Retry Guide"}
        doc.update(document)
        return {"document": doc, "chunks": [{"content": "retry", "order": 0}]}

    def test_aliases(self):
        request = IngestDocumentRequest.model_validate(
            {**self._payload(sourceUrl="https://docs.example.com/retry"),
             "generateEmbeddings": True}
        )
        assert request.document.external_id == "guide"
        assert request.document.source_url == "https://docs.example.com/retry"
        assert request.generate_embeddings is True
        assert request.chunks[0].token_count is None

    def test_source_url_must_be_http(self):
        with pytest.raises(ValidationError):
            IngestDocumentRequest.model_validate(self._payload(sourceUrl="ftp://host/file"))

    def test_at_least_one_chunk(self):
        payload = self._payload()
        payload["chunks"] = []
        with pytest.raises(ValidationError):
            IngestDocumentRequest.model_validate(payload)

    def test_negative_order_rejected(self):
        payload = self._payload()
        payload["chunks"] = [{"content": "retry", "order": -1}]
        with pytest.raises(ValidationError):
            IngestDocumentRequest.model_validate(payload)
