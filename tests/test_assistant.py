from types import SimpleNamespace

import pytest
from google.genai import types

from artisan_haven import assistant
from artisan_haven.assistant import build_chat_history, extract_json_object


def chat(client, *contents):
    messages = []
    for index, content in enumerate(contents):
        role = "assistant" if index % 2 else "user"
        messages.append({"role": role, "content": content})
    return client.post("/api/ai/assistant", json={"messages": messages})


def test_chat_history_maps_roles_and_drops_leading_greetings():
    messages = [
        {"role": "assistant", "content": "Namaste! How can I help?"},
        {"role": "user", "content": "I need a gift"},
        {"role": "assistant", "content": "For whom?"},
        {"role": "user", "content": "My sister"},
    ]

    assert build_chat_history(messages) == [
        {"role": "user", "text": "I need a gift"},
        {"role": "model", "text": "For whom?"},
    ]


def test_extract_json_object_ignores_surrounding_text():
    raw = 'Sure! ```json\n{"pricingAnalysis": "Fair", "seoKeywords": ["clay"]}\n```'

    assert extract_json_object(raw)["seoKeywords"] == ["clay"]
    with pytest.raises(ValueError):
        extract_json_object("no json here")


def test_assistant_requires_api_key(make_app):
    client = make_app().test_client()

    chat_response = chat(client, "Hello")
    analysis = client.post(
        "/api/ai/analyze-product", json={"name": "Mug", "description": "Clay", "price": 300}
    )

    assert chat_response.status_code == 500
    assert chat_response.get_json()["message"] == "Server configuration error: Missing API Key."
    assert analysis.status_code == 500


def test_assistant_validates_messages(client):
    assert client.post("/api/ai/assistant", json={}).status_code == 400
    assert client.post("/api/ai/assistant", json={"messages": []}).status_code == 400
    assert client.post("/api/ai/assistant", json={"messages": ["hi"]}).status_code == 400
    assert chat(client, "   ").status_code == 400


def test_plain_reply_has_no_products(client, llm):
    response = chat(client, "Hi", "Hello! What are you shopping for?", "Just browsing")

    assert response.status_code == 200
    assert response.get_json() == {"reply": "Here is what I found."}
    assert llm.conversations[0]["message"] == "Just browsing"
    assert llm.conversations[0]["history"] == [
        {"role": "user", "text": "Hi"},
        {"role": "model", "text": "Hello! What are you shopping for?"},
    ]


def test_search_returns_at_most_three_verified_matches(client, llm, add_product):
    add_product(name="Blue Mug", price=300.0)
    add_product(name="Tea Set", description="Blue glazed cups")
    add_product(name="Indigo Throw", category="textiles", description="Dyed deep blue")
    add_product(name="Blue Plate")
    add_product(name="Hidden Blue Bowl", is_verified=False)
    add_product(name="Oak Spoon", category="woodwork")
    llm.search_query = "blue"

    body = chat(client, "Show me something blue").get_json()

    names = [product["name"] for product in body["products"]]
    assert len(names) == 3
    assert "Hidden Blue Bowl" not in names
    assert "Oak Spoon" not in names
    assert body["reply"] == "Here is what I found."


def test_search_matches_category(client, llm, add_product):
    add_product(name="Oak Spoon", category="woodwork")
    add_product(name="Clay Pot", category="pottery")
    llm.search_query = "WOODWORK"

    body = chat(client, "Anything carved?").get_json()

    assert [product["name"] for product in body["products"]] == ["Oak Spoon"]


def test_assistant_reports_model_failure(client, llm):
    llm.error = RuntimeError("quota exceeded")

    response = chat(client, "Hello")

    assert response.status_code == 500
    assert response.get_json()["message"] == "Failed to get a response from the AI."


def test_analyze_product(client, llm):
    missing = client.post("/api/ai/analyze-product", json={"name": "Mug", "price": 300})
    ok = client.post(
        "/api/ai/analyze-product",
        json={"name": "Mug", "description": "Hand-thrown clay", "price": 300, "views": 12, "sales": 2},
    )

    assert missing.status_code == 400
    assert ok.get_json() == {"pricingAnalysis": "Fair", "seoKeywords": ["clay"]}
    assert "₹300" in llm.prompts[0]
    assert "2 sales, 12 views" in llm.prompts[0]


def test_analyze_product_rejects_unparseable_output(client, llm):
    llm.analysis_text = "I cannot help with that."

    response = client.post(
        "/api/ai/analyze-product", json={"name": "Mug", "description": "Clay", "price": 300}
    )

    assert response.status_code == 500
    assert response.get_json()["message"] == "Failed to generate AI analysis."


def test_owned_product_analysis_uses_stored_metrics(client, llm, verified_artisan, add_product):
    headers, artisan_id = verified_artisan()
    product_id = add_product(artisan_id=artisan_id, name="Jute Basket", price=640.0, views=40, sales=5)
    foreign_id = add_product(artisan_id="someone-else")

    response = client.post(f"/api/artisan/products/{product_id}/analysis", headers=headers)
    foreign = client.post(f"/api/artisan/products/{foreign_id}/analysis", headers=headers)

    assert response.status_code == 200
    assert '"Jute Basket"' in llm.prompts[0]
    assert "5 sales, 40 views" in llm.prompts[0]
    assert foreign.status_code == 404


class ScriptedChat:
    def __init__(self, responses):
        self.responses = list(responses)
        self.sent = []

    def send_message(self, message):
        self.sent.append(message)
        return self.responses.pop(0)


class ScriptedGenaiClient:
    """Replaces ``genai.Client`` and hands out one scripted chat session."""

    def __init__(self, responses):
        self.chat = ScriptedChat(responses)
        self.created = []
        self.chats = SimpleNamespace(create=self.create_chat)

    def create_chat(self, model, config, history):
        self.created.append({"model": model, "config": config, "history": history})
        return self.chat


def scripted_gemini(monkeypatch, *responses):
    scripted = ScriptedGenaiClient(responses)
    monkeypatch.setattr(assistant.genai, "Client", lambda api_key: scripted)
    client = assistant.GeminiClient("test-key", "chat-model", "analysis-model")
    return client, scripted


def test_gemini_client_runs_search_tool_round_trip(monkeypatch):
    tool_call = SimpleNamespace(name="searchProducts", args={"query": "blue mug"})
    client, scripted = scripted_gemini(
        monkeypatch,
        SimpleNamespace(function_calls=[tool_call], text=None),
        SimpleNamespace(function_calls=None, text="These mugs are lovely."),
    )
    queries = []

    def search(query):
        queries.append(query)
        return [{"id": "p1", "name": "Blue Mug"}]

    reply, products = client.converse(
        [{"role": "user", "text": "Hi"}, {"role": "model", "text": "Hello!"}],
        "Find me a blue mug",
        search,
    )

    assert reply == "These mugs are lovely."
    assert products == [{"id": "p1", "name": "Blue Mug"}]
    assert queries == ["blue mug"]

    created = scripted.created[0]
    assert created["model"] == "chat-model"
    assert created["config"].automatic_function_calling.disable is True
    assert created["config"].tools[0].function_declarations[0].name == "searchProducts"
    assert [(turn.role, turn.parts[0].text) for turn in created["history"]] == [
        ("user", "Hi"),
        ("model", "Hello!"),
    ]

    first, follow_up = scripted.chat.sent
    assert first == "Find me a blue mug"
    assert isinstance(follow_up, types.Part)
    assert follow_up.function_response.name == "searchProducts"
    assert follow_up.function_response.response == {
        "products": [{"id": "p1", "name": "Blue Mug"}]
    }


def test_gemini_client_plain_reply_skips_search(monkeypatch):
    client, scripted = scripted_gemini(
        monkeypatch, SimpleNamespace(function_calls=None, text="Happy to help!")
    )

    def search(query):
        raise AssertionError("search should not run")

    reply, products = client.converse([], "Hello", search)

    assert reply == "Happy to help!"
    assert products is None
    assert scripted.chat.sent == ["Hello"]
