"""Tests for terminal QR rendering."""

import io

from relaybot.utils.qr_terminal import render_qr


def test_render_prints_code_and_payload():
    out = io.StringIO()
    url = "https://matrix.example.org/_matrix/client/v3/login/sso/redirect?redirectUrl=x"

    render_qr(url, out=out)

    lines = out.getvalue().splitlines()
    code_lines = lines[: lines.index("")]
    assert len(code_lines) > 5
    assert len({len(line) for line in code_lines}) == 1
    assert url in lines


def test_longer_payload_gives_larger_code():
    short, long = io.StringIO(), io.StringIO()

    render_qr("x", out=short)
    render_qr("x" * 200, out=long)

    assert len(long.getvalue().splitlines()) > len(short.getvalue().splitlines())
