"""Conversational shopping assistant and listing analysis backed by Gemini."""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request
from google import genai
from google.genai import types

from .catalog import serialize_product
from .database import get_db
from .helpers import safe_float, safe_positive_int

assistant_bp = Blueprint("assistant", __name__)

LLM_EXTENSION_KEY = "artisan_haven_llm"
SEARCH_TOOL_NAME = "searchProducts"
SEARCH_RESULT_LIMIT = 3
MISSING_KEY_MESSAGE = "Server configuration error: Missing API Key."

SEARCH_TOOL = types.Tool(
    function_declarations=[
        types.FunctionDeclaration(
            name=SEARCH_TOOL_NAME,
            description=(
                "Searches the marketplace's product database based on a user's query "
                "about what they are looking for. Returns a list of products that "
                "match the query."
            ),
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "query": types.Schema(
                        type=types.Type.STRING,
                        description=(
                            "A detailed search query describing the product the user is "
                            "looking for. For example: 'handcrafted ceramic mug', "
                            "'blue silk scarf', 'wooden gift for a wedding'."
                        ),
                    )
                },
                required=["query"],
            ),
        )
    ]
)

ANALYSIS_PROMPT = """You are an expert e-commerce and brand strategist for 'Artisan Haven', a marketplace for unique, handcrafted goods.
An artisan needs a comprehensive analysis of their product listing.

Product Name: "{name}"
Product Price: ₹{price}
Product Description: "{description}"
Current Performance: {sales} sales, {views} views in the last 30 days.

Your task is to provide a detailed, actionable analysis covering several key areas to help the artisan succeed.
Your response MUST be in a valid JSON format. Do not include any text, titles, or markdown outside of the JSON structure.
The JSON object should have the following structure:
{{
  "pricingAnalysis": "Analyze the price. Is it appropriate? Suggest a potential price range and justify it based on perceived value and craftsmanship.",
  "descriptionSuggestion": "Provide one concrete suggestion to make the description more compelling and emotionally resonant. Focus on storytelling.",
  "marketingIdea": "Offer one simple, creative marketing idea an artisan can use on social media to promote this specific product.",
  "idealCustomerPersona": {{"name": "A short persona name", "age_range": "e.g. 25-40", "interests": "Their interests", "values": "What they value in a handcrafted item"}},
  "seoKeywords": ["keyword 1", "keyword 2", "keyword 3", "keyword 4", "keyword 5"],
  "photographyTips": "Based on the product description, provide two actionable tips for lifestyle photography."
}}
"""


class GeminiClient:
    """Thin wrapper over the google-genai SDK used by the AI routes."""

    def __init__(self, api_key: str, assistant_model: str, analysis_model: str):
        self.client = genai.Client(api_key=api_key)
        self.assistant_model = assistant_model
        self.analysis_model = analysis_model

    def converse(
        self,
        history: List[Dict[str, str]],
        message: str,
        search_products: Callable[[str], List[Dict[str, Any]]],
    ) -> Tuple[str, Optional[List[Dict[str, Any]]]]:
        """Send ``message`` and serve at most one product-search tool call.

        Returns the reply text and the products found, or None when the
        model answered without searching.
        """
        chat = self.client.chats.create(
            model=self.assistant_model,
            config=types.GenerateContentConfig(
                tools=[SEARCH_TOOL],
                automatic_function_calling=types.AutomaticFunctionCallingConfig(
                    disable=True
                ),
            ),
            history=[
                types.Content(role=turn["role"], parts=[types.Part(text=turn["text"])])
                for turn in history
            ],
        )
        response = chat.send_message(message)
        function_calls = response.function_calls or []
        call = function_calls[0] if function_calls else None

        if call and call.name == SEARCH_TOOL_NAME:
            query = str((call.args or {}).get("query") or "")
            products = search_products(query)
            follow_up = chat.send_message(
                types.Part.from_function_response(
                    name=SEARCH_TOOL_NAME, response={"products": products}
                )
            )
            return follow_up.text or "", products

        return response.text or "", None

    def generate(self, prompt: str) -> str:
        response = self.client.models.generate_content(
            model=self.analysis_model, contents=prompt
        )
        return response.text or ""


def get_llm_client():
    client = current_app.extensions.get(LLM_EXTENSION_KEY)
    if client is not None:
        return client

    api_key = (current_app.config.get("GOOGLE_GEMINI_API_KEY") or "").strip()
    if not api_key:
        return None

    client = GeminiClient(
        api_key,
        current_app.config["GEMINI_ASSISTANT_MODEL"],
        current_app.config["GEMINI_ANALYSIS_MODEL"],
    )
    current_app.extensions[LLM_EXTENSION_KEY] = client
    return client


def build_chat_history(messages) -> List[Dict[str, str]]:
    """Map client messages (minus the newest) onto user/model turns.

    The model requires the history to open with a user turn, so leading
    assistant greetings are dropped.
    """
    history = [
        {
            "role": "model" if message.get("role") == "assistant" else "user",
            "text": str(message.get("content") or ""),
        }
        for message in messages[:-1]
    ]
    while history and history[0]["role"] == "model":
        history.pop(0)
    return history


def search_products(query: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Dict[str, Any]]:
    current_app.logger.info('AI is searching for products with query: "%s"', query)
    pattern = re.compile(re.escape(query.strip()), re.IGNORECASE)
    cursor = (
        get_db()
        .products.find(
            {
                "is_verified": True,
                "$or": [
                    {"name": pattern},
                    {"description": pattern},
                    {"category": pattern},
                ],
            }
        )
        .sort([("created_at", -1), ("_id", -1)])
        .limit(limit)
    )
    products = [serialize_product(document) for document in cursor]
    current_app.logger.info("Found %s products.", len(products))
    return products


def extract_json_object(raw: str) -> Dict[str, Any]:
    """Parse the first ``{...}`` block in a model reply."""
    match = re.search(r"\{[\s\S]*\}", raw or "")
    if not match:
        raise ValueError(f"No JSON object found in model output: {raw}")
    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError("Model output is not a JSON object.")
    return parsed


def run_product_analysis(client, name, description, price, views=0, sales=0):
    prompt = ANALYSIS_PROMPT.format(
        name=name,
        description=description,
        price=price,
        views=safe_positive_int(views, 0),
        sales=safe_positive_int(sales, 0),
    )
    return extract_json_object(client.generate(prompt))


def analysis_response(client, name, description, price, views=0, sales=0):
    try:
        analysis = run_product_analysis(client, name, description, price, views, sales)
    except Exception:
        current_app.logger.exception("Error calling Gemini API for product analysis")
        return jsonify({"message": "Failed to generate AI analysis."}), 500

    return jsonify(analysis)


@assistant_bp.route("/api/ai/assistant", methods=["POST"])
def shopping_assistant():
    client = get_llm_client()
    if client is None:
        return jsonify({"message": MISSING_KEY_MESSAGE}), 500

    payload = request.get_json(silent=True) or {}
    messages = payload.get("messages")
    if (
        not isinstance(messages, list)
        or not messages
        or not all(isinstance(message, dict) for message in messages)
    ):
        return jsonify({"message": "A non-empty list of messages is required."}), 400

    user_message = str(messages[-1].get("content") or "").strip()
    if not user_message:
        return jsonify({"message": "The latest message cannot be empty."}), 400

    try:
        reply, products = client.converse(
            build_chat_history(messages), user_message, search_products
        )
    except Exception:
        current_app.logger.exception("Error with Conversational AI Assistant")
        return jsonify({"message": "Failed to get a response from the AI."}), 500

    if products is None:
        return jsonify({"reply": reply})
    return jsonify({"reply": reply, "products": products})


@assistant_bp.route("/api/ai/analyze-product", methods=["POST"])
def analyze_product():
    client = get_llm_client()
    if client is None:
        return jsonify({"message": MISSING_KEY_MESSAGE}), 500

    payload = request.get_json(silent=True) or {}
    name = str(payload.get("name") or "").strip()
    description = str(payload.get("description") or "").strip()
    price = safe_float(payload.get("price"), 0.0)

    if not name or not description or not price:
        return (
            jsonify({"message": "Product name, description, and price are required."}),
            400,
        )

    return analysis_response(
        client, name, description, price, payload.get("views"), payload.get("sales")
    )
