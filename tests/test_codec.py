"""Tests for the base64 / UTF-8 / JSON transport codec."""
import base64

import pytest

from statusboard import codec
from statusboard.errors import ParseFailure


class TestTransport:

    def test_multibyte_text_survives_round_trip(self):
        doc = {"projects": [], "todos": [{"id": "t1", "title": "לכתוב תיעוד 🚀"}]}
        assert codec.decode_document(codec.encode_document(doc)) == doc

    def test_encoded_form_is_base64_of_utf8_bytes(self):
        encoded = codec.encode_text("café")
        assert base64.b64decode(encoded) == "café".encode("utf-8")

    def test_decode_strips_line_wrapping(self):
        encoded = codec.encode_text("x" * 200)
        wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
        assert codec.decode_text(wrapped) == "x" * 200

    def test_invalid_base64_is_parse_failure(self):
        with pytest.raises(ParseFailure):
            codec.decode_transport("not base64!!")

    def test_invalid_utf8_is_parse_failure(self):
        with pytest.raises(ParseFailure):
            codec.decode_text(base64.b64encode(b"\xff\xfe\xfa").decode("ascii"))


class TestDocumentJson:

    def test_dump_keeps_non_ascii_and_indents(self):
        text = codec.dump_document({"title": "שלום"})
        assert "שלום" in text
        assert text == '{\n  "title": "שלום"\n}'

    def test_load_rejects_malformed_json(self):
        with pytest.raises(ParseFailure):
            codec.load_document("{not json")

    def test_load_rejects_non_object_root(self):
        with pytest.raises(ParseFailure):
            codec.load_document("[1, 2, 3]")
