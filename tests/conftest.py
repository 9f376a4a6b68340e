import io
from datetime import datetime, timedelta

import mongomock
import pytest

from artisan_haven import create_app

ADMIN_EMAIL = "admin@artisanhaven.in"
PASSWORD = "handmade123"


class FakeLLM:
    """Stands in for GeminiClient; records what the routes send it."""

    def __init__(self):
        self.reply = "Here is what I found."
        self.search_query = None
        self.analysis_text = '{"pricingAnalysis": "Fair", "seoKeywords": ["clay"]}'
        self.error = None
        self.conversations = []
        self.prompts = []

    def converse(self, history, message, search_products):
        self.conversations.append({"history": history, "message": message})
        if self.error:
            raise self.error
        if self.search_query is None:
            return self.reply, None
        return self.reply, search_products(self.search_query)

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.analysis_text


@pytest.fixture
def database():
    return mongomock.MongoClient().artisanhaven


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def upload_folder(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def make_app(database, upload_folder, monkeypatch):
    for variable in ("RESEND_API_KEY", "GOOGLE_GEMINI_API_KEY", "UPLOAD_FOLDER"):
        monkeypatch.delenv(variable, raising=False)

    def factory(llm_client=None, **overrides):
        config = {
            "TESTING": True,
            "UPLOAD_FOLDER": str(upload_folder),
            "JWT_SECRET_KEY": "test-secret-key-for-artisan-haven-suite",
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "RESEND_API_KEY": "",
            "GOOGLE_GEMINI_API_KEY": "",
            "DELIVERY_CHARGE": 50.0,
            **overrides,
        }
        return create_app(config, database=database, llm_client=llm_client)

    return factory


@pytest.fixture
def app(make_app, llm):
    return make_app(llm_client=llm)


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def media_file(filename="piece.jpg", content=b"fake-bytes"):
    return (io.BytesIO(content), filename)


@pytest.fixture
def register(client):
    def _register(email, role="buyer", name="Test User"):
        response = client.post(
            "/api/auth/register",
            json={"email": email, "name": name, "password": PASSWORD, "role": role},
        )
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body["access_token"], body["user"]

    return _register


@pytest.fixture
def admin_headers(register):
    token, _ = register(ADMIN_EMAIL, name="Admin")
    return auth_headers(token)


@pytest.fixture
def verified_artisan(register, database):
    def _verified_artisan(email="potter@example.com", name="Meera Potter"):
        token, profile = register(email, role="artisan", name=name)
        database.users.update_one(
            {"email": email}, {"$set": {"is_verified_artisan": True}}
        )
        return auth_headers(token), profile["id"]

    return _verified_artisan


@pytest.fixture
def buyer(register, client):
    def _buyer(email="buyer@example.com", with_address=True):
        token, profile = register(email, name="Asha Buyer")
        headers = auth_headers(token)
        if with_address:
            response = client.put(
                "/api/auth/me/address",
                json={
                    "line1": "12 Lake Road",
                    "city": "Jaipur",
                    "state": "Rajasthan",
                    "pincode": "302001",
                    "phone": "9999999999",
                },
                headers=headers,
            )
            assert response.status_code == 200
        return headers, profile["id"]

    return _buyer


@pytest.fixture
def add_product(database):
    counter = {"value": 0}

    def _add_product(artisan_id="artisan-1", **overrides):
        counter["value"] += 1
        document = {
            "name": f"Product {counter['value']}",
            "description": "Handcrafted with care",
            "price": 100.0,
            "category": "pottery",
            "media": [{"filename": f"products/{artisan_id}/p{counter['value']}.jpg", "type": "image"}],
            "artisan_id": artisan_id,
            "artisan_name": "Meera Potter",
            "created_at": datetime(2024, 1, 1) + timedelta(minutes=counter["value"]),
            "is_verified": True,
            "views": 0,
            "sales": 0,
        }
        document.update(overrides)
        result = database.products.insert_one(document)
        return str(result.inserted_id)

    return _add_product
