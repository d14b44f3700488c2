import base64

from cadence.email.email_utils import html_to_plaintext
from cadence.email.mime_builder import (
    build_encoded_message,
    build_raw_message,
    compose_message,
    decode_raw_message,
    encode_raw_message,
)


def test_raw_message_layout():
    raw = build_raw_message(compose_message("bob@example.com", "Hi", "Body text"))
    assert raw == (
        b"To: bob@example.com\r\n"
        b"Subject: Hi\r\n"
        b'Content-Type: text/plain; charset="UTF-8"\r\n'
        b"\r\n"
        b"Body text"
    )


def test_encoding_is_urlsafe_and_unpadded():
    # Standard base64 of these bytes is "+/8=".
    assert base64.b64encode(b"\xfb\xff") == b"+/8="
    assert encode_raw_message(b"\xfb\xff") == "-_8"


def test_encode_then_decode_reproduces_bytes():
    raw = build_raw_message(compose_message("zoë@example.com", "Grüße ✓", "line one\nline two"))
    encoded = encode_raw_message(raw)

    assert "=" not in encoded and "+" not in encoded and "/" not in encoded
    assert decode_raw_message(encoded) == raw


def test_empty_subject_uses_placeholder():
    assert compose_message("bob@example.com", "", "x").subject == "(No subject)"
    assert compose_message("bob@example.com", None, "x").subject == "(No subject)"


def test_header_values_cannot_inject_lines():
    msg = compose_message("bob@example.com\r\nBcc: eve@example.com", "Hi\r\nBcc: eve@example.com", "x")
    raw = build_raw_message(msg)
    header_block = raw.split(b"\r\n\r\n", 1)[0]
    assert header_block.count(b"\r\n") == 2
    assert b"\r\nBcc:" not in header_block


def test_html_body_is_reduced_to_plain_text():
    html = "<html><head><style>p{color:red}</style></head><body><p>Hello <b>Bob</b>,</p>" \
           "<p>Line one<br>Line two</p><ul><li>first</li><li>second</li></ul><script>x()</script></body></html>"
    text = html_to_plaintext(html)
    assert text == "Hello Bob,\nLine one\nLine two\n* first\n* second"


def test_plain_body_passes_through():
    body = "Meet at 3 < 4 o'clock\n\n  indented"
    assert html_to_plaintext(body) == body


def test_encoded_message_carries_plain_text_body():
    encoded = build_encoded_message("bob@example.com", "", "<p>Hi&nbsp;there</p>")
    raw = decode_raw_message(encoded)
    assert raw.startswith(b"To: bob@example.com\r\nSubject: (No subject)\r\n")
    assert raw.endswith(b"\r\n\r\nHi there")
