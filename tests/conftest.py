import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["STARFALL_LOG_JSON"] = "false"

from starfall.database import db
from starfall.services.delivery_providers import DeliveryProvider, DeliveryResult
from starfall.services.notifier import Notifier, SafeNotifier
from starfall.services.order_store import Buyer
from starfall.services.payment_providers import Invoice, InvoiceProvider, ProviderStatus

ADMIN_CHAT_ID = "999"

TEST_CONFIG = {
    "TESTING": True,
    "SCHEDULER_ENABLED": False,
    "PUBLIC_BASE": "https://stars.test",
    "WEBHOOK_SECRET_RUB": "rub-secret",
    "WEBHOOK_SECRET_CRYPTO": "crypto-secret",
    "WEBHOOK_SECRET_SBP": "sbp-secret",
    "CHECKOUT_RUB": "https://pay.test/rub",
    "CHECKOUT_CRYPTO": "https://pay.test/crypto",
    "ADMIN_CHAT_ID": ADMIN_CHAT_ID,
    "BOT_TOKEN": "",
    "DELIVERY_MAX_RETRIES": 4,
    "SBP_PAID_STATUS_CODE": 1,
    "STAR_PACKS": [50, 100, 250],
}


@pytest.fixture
def transport():
    """Chat transport double; every send returns message id "100"."""
    t = MagicMock(spec=Notifier)
    t.send.return_value = "100"
    t.send_photo.return_value = "101"
    return t


@pytest.fixture
def invoice_provider():
    p = MagicMock(spec=InvoiceProvider)
    p.name = "sbp"
    p.currency = "RUB"
    p.supports_polling = True
    p.create_invoice.side_effect = lambda order_reference, **kw: Invoice(
        provider="sbp",
        reference=f"inv-{order_reference[:8]}",
        pay_url="https://qr.test/pay",
        qr_image=None,
        poll_operation_id=f"op-{order_reference[:8]}",
    )
    p.get_status.return_value = ProviderStatus(status_code=0, status_label="NOT_PAID")
    return p


@pytest.fixture
def delivery_provider():
    p = MagicMock(spec=DeliveryProvider)
    p.deliver.return_value = DeliveryResult(ok=True, tx="dlv-1")
    return p


@pytest.fixture
def app(transport, invoice_provider, delivery_provider):
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()
    with patch.dict(os.environ, {
        "DATABASE_URL": f"sqlite:///{db_path}",
    }):
        from starfall.factory import create_app
        app = create_app(
            TEST_CONFIG,
            notifier=SafeNotifier(transport, admin_chat_id=ADMIN_CHAT_ID),
            invoice_provider=invoice_provider,
            delivery_provider=delivery_provider,
        )
        with app.app_context():
            yield app
            db.session.remove()
            db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['starfall']


@pytest.fixture
def store(services):
    return services.orders


@pytest.fixture
def gateway(services):
    return services.gateway


@pytest.fixture
def buyer():
    return Buyer(id="42", handle="alice")


@pytest.fixture
def make_order(store, buyer):
    """Create an order, optionally forcing its status."""
    def _make(quantity=100, status=None, gift_recipient=None, who=None):
        order = store.create(who or buyer, quantity, gift_recipient=gift_recipient)
        if status is not None:
            order.status = status
            db.session.commit()
        return order
    return _make


@pytest.fixture
def sent_texts(transport):
    """Texts passed to transport.send, optionally filtered by chat id."""
    def _texts(chat_id=None):
        texts = []
        for call in transport.send.call_args_list:
            target, text = call.args[0], call.args[1]
            if chat_id is None or str(target) == str(chat_id):
                texts.append(text)
        return texts
    return _texts
