from datetime import datetime, timedelta, timezone

import pytest
from conftest import USER, FakeMessenger, analysis
from fastapi.testclient import TestClient

from orderdesk.database import get_db
from orderdesk.main import app
from orderdesk.models import Message
from orderdesk.routers.webhook import VOICE_NOTE_FAILED, twiml_response
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.intent_classifier import get_intent_classifier
from orderdesk.services.messenger import get_messenger

VOICE_URL = "https://api.twilio.com/media/ME123"


def form(body="hello", sid="SMin1", **extra):
    data = {"From": USER, "To": "whatsapp:+14155238886", "Body": body, "MessageSid": sid}
    data.update(extra)
    return data


@pytest.fixture
def client_for(session_factory, classifier):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def build(messenger):
        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_intent_classifier] = lambda: classifier
        app.dependency_overrides[get_messenger] = lambda: messenger
        return TestClient(app)

    yield build
    app.dependency_overrides.clear()


@pytest.fixture
def read_db(session_factory):
    session = session_factory()
    yield session
    session.close()


def seed_orders(session_factory, count):
    db = session_factory()
    repo = EntityRepository(db)
    when = datetime(2030, 1, 15, 10, 0, tzinfo=timezone.utc)
    ids = [repo.create_order(USER, f"Item {i}", fulfillment_date=when + timedelta(days=i)).order_id for i in range(count)]
    db.commit()
    db.close()
    return ids


class TestTwiml:
    def test_message_is_escaped(self):
        response = twiml_response("Tom & Jerry <3")
        assert response.media_type == "application/xml"
        assert b"<Message>Tom &amp; Jerry &lt;3</Message>" in response.body

    def test_empty_response(self):
        assert twiml_response().body.endswith(b"<Response></Response>")


class TestWebhook:
    def test_status(self, client_for, messenger):
        response = client_for(messenger).get("/webhook/whatsapp")
        assert response.json() == {"status": "ok", "message": "WhatsApp webhook endpoint is active"}

    def test_missing_sender_is_rejected(self, client_for, messenger):
        response = client_for(messenger).post("/webhook/whatsapp", data={"Body": "hi", "MessageSid": "SM1"})
        assert response.status_code == 400

    def test_reply_inline_when_messenger_unconfigured(self, client_for, read_db):
        response = client_for(FakeMessenger(configured=False)).post("/webhook/whatsapp", data=form())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Message>I can help you with tasks and orders." in response.text
        inbound = read_db.query(Message).filter(Message.message_sid == "SMin1").one()
        assert (inbound.direction, inbound.body) == ("inbound", "hello")

    def test_reply_inline_when_send_fails(self, client_for):
        response = client_for(FakeMessenger(fail=True)).post("/webhook/whatsapp", data=form())
        assert "<Message>" in response.text

    def test_sent_reply_is_stored_and_answerable(self, client_for, classifier, messenger, session_factory, read_db):
        order_ids = seed_orders(session_factory, 2)
        client = client_for(messenger)

        classifier.classify.return_value = analysis("get", "order")
        response = client.post("/webhook/whatsapp", data=form("show my orders"))
        assert response.text.endswith("<Response></Response>")
        assert messenger.sent[0][0] == USER
        assert "You have 2 orders" in messenger.sent[0][1]

        outbound = read_db.query(Message).filter(Message.message_sid == "SM0001").one()
        assert outbound.direction == "outbound"
        assert outbound.context["order_ids"] == order_ids

        classifier.classify.return_value = analysis()
        client.post("/webhook/whatsapp", data=form("1 done", sid="SMin2", OriginalRepliedMessageSid="SM0001"))
        assert messenger.sent[1][1].startswith(f"Order {order_ids[0]} has been updated.")

    def test_voice_note_is_transcribed(self, client_for, classifier, messenger, read_db):
        messenger.media[VOICE_URL] = b"OggS"
        classifier.llm.transcribe_audio.return_value = "show my orders"
        classifier.classify.return_value = analysis("get", "order")

        client_for(messenger).post(
            "/webhook/whatsapp",
            data=form("", NumMedia="1", MediaUrl0=VOICE_URL, MediaContentType0="audio/ogg"),
        )

        assert classifier.classify.call_args.args[0] == "show my orders"
        inbound = read_db.query(Message).filter(Message.message_sid == "SMin1").one()
        assert inbound.body == "show my orders"
        assert inbound.extracted_text == "show my orders"
        assert inbound.media_type == "audio"

    def test_untranscribable_voice_note(self, client_for, classifier):
        response = client_for(FakeMessenger(configured=False)).post(
            "/webhook/whatsapp",
            data=form("", NumMedia="1", MediaUrl0=VOICE_URL, MediaContentType0="audio/ogg"),
        )
        assert f"<Message>{VOICE_NOTE_FAILED}</Message>" in response.text
        classifier.classify.assert_not_called()

    def test_unexpected_failure_still_answers(self, client_for, classifier, messenger):
        messenger.media[VOICE_URL] = b"OggS"
        classifier.llm.transcribe_audio.side_effect = RuntimeError("boom")
        response = client_for(messenger).post(
            "/webhook/whatsapp",
            data=form("", NumMedia="1", MediaUrl0=VOICE_URL, MediaContentType0="audio/ogg"),
        )
        assert response.status_code == 200
        assert "something went wrong" in response.text


def test_health(client_for, messenger):
    assert client_for(messenger).get("/health").json() == {"status": "ok"}
