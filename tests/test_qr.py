"""
QR rendering and QR service tests.
"""

import base64
import io

import pytest
from PIL import Image

from mqrgen import create_app
from mqrgen.config import TestConfig
from mqrgen.errors import EntitlementDenied, RenderError, ValidationError
from mqrgen.services.qr_service import generate_bulk, generate_qr
from mqrgen.utils.money import format_minor_units
from mqrgen.utils.qr_generator import generate_styled_qr


@pytest.fixture
def render_app(tmp_path):
    return create_app(TestConfig, QR_OUTPUT_DIR=str(tmp_path))


def _logo_data_uri():
    buffer = io.BytesIO()
    Image.new("RGBA", (40, 40), (255, 0, 0, 255)).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


class TestStyledQr:
    def test_writes_png_of_requested_size(self, render_app, tmp_path):
        with render_app.app_context():
            path = generate_styled_qr("https://example.com", {"size": 256, "style": "rounded"})

        assert path.startswith("qrcodes/qr_")
        image = Image.open(tmp_path / path.split("/", 1)[1])
        assert image.size == (256, 256)

    def test_logo_overlay(self, render_app, tmp_path):
        with render_app.app_context():
            path = generate_styled_qr("hello", {"logo_data": _logo_data_uri(), "foreground_color": "#003366"})
        assert (tmp_path / path.split("/", 1)[1]).exists()

    @pytest.mark.parametrize("styling", [
        {"foreground_color": "not-a-colour"},
        {"size": 50},
        {"size": "big"},
        {"margin": -1},
    ])
    def test_bad_styling(self, render_app, styling):
        with render_app.app_context(), pytest.raises(ValidationError):
            generate_styled_qr("hello", styling)

    def test_content_too_long(self, render_app):
        with render_app.app_context(), pytest.raises(RenderError):
            generate_styled_qr("x" * 3000, {"error_correction": "H"})


class TestQrService:
    def test_generate_single(self, store, make_account, renderer, now):
        qr, account = generate_qr(store.accounts, renderer, make_account(), "  hi  ", qr_type="TEXT", now=now)

        assert qr.content == "hi"
        assert qr.type == "text"
        assert qr.title == "QR Code"
        assert account.usage.qr_generated_today == 1

    def test_unknown_type(self, store, make_account, renderer, now):
        with pytest.raises(ValidationError):
            generate_qr(store.accounts, renderer, make_account(), "hi", qr_type="hologram", now=now)

    def test_denied_generation_is_not_counted(self, store, make_account, renderer, now):
        account = make_account(qr_today=100)
        with pytest.raises(EntitlementDenied):
            generate_qr(store.accounts, renderer, account, "hi", now=now)

        assert renderer.calls == []
        assert store.accounts.get(account.id).usage.qr_generated_today == 100

    def test_bulk_render_failures_are_reported(self, store, make_account, now):
        def flaky(content, styling):
            if content == "bad":
                raise RenderError("Content is too long to encode as a QR code")
            return f"qrcodes/{content}.png"

        result = generate_bulk(store.accounts, flaky, make_account(), ["ok", "bad", {"content": "fine"}], now=now)

        assert result.generated == 2
        assert result.errors == [{"row": 2, "error": "Content is too long to encode as a QR code"}]
        assert result.account.usage.qr_generated_today == 2

    def test_bulk_overflowing_row_is_reported(self, render_app, store, make_account, now):
        with render_app.app_context():
            result = generate_bulk(
                store.accounts, generate_styled_qr, make_account(),
                ["short row", "x" * 3000], styling={"error_correction": "H"}, now=now,
            )

        assert result.generated == 1
        assert result.results[0].image.startswith("qrcodes/qr_")
        assert result.errors == [{"row": 2, "error": "Content is too long to encode as a QR code"}]
        assert result.account.usage.qr_generated_today == 1

    def test_bulk_at_the_exact_limit(self, store, make_account, renderer, now):
        account = make_account(qr_today=97)
        result = generate_bulk(store.accounts, renderer, account, ["a", "b", "c"], now=now)
        assert result.account.usage.qr_generated_today == 100

    @pytest.mark.parametrize("items", [[], None, "abc"])
    def test_bulk_requires_a_list(self, store, make_account, renderer, now, items):
        with pytest.raises(ValidationError):
            generate_bulk(store.accounts, renderer, make_account(), items, now=now)


class TestMoney:
    @pytest.mark.parametrize("amount,expected", [
        (0, "₹0.00"),
        (59900, "₹599.00"),
        (479900, "₹4,799.00"),
        (5, "₹0.05"),
    ])
    def test_format_inr(self, amount, expected):
        assert format_minor_units(amount) == expected

    def test_other_currency(self):
        assert format_minor_units(1999, "USD") == "$19.99"
        assert format_minor_units(1999, "JPY") == "JPY 19.99"
