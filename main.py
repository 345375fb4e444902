import os
import uuid

import httpx
from dotenv import load_dotenv

GREETING = "Hello! Describe your product, and I'll ask a few questions to build its transparency record. What are you selling?"
HELP = "Commands: /products (list), /open <id> (continue a product), /new (start over), exit"


class ApiError(Exception):
    pass


class IntakeClient:
    """Thin client for the product intake API."""

    def __init__(self, base_url: str, http: httpx.Client = None):
        self.http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=60.0)

    def _request(self, method: str, path: str, **kwargs):
        try:
            resp = self.http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"Network error or unexpected issue: {e}") from e
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error")
            except ValueError:
                message = None
            raise ApiError(message or f"Request failed with status {resp.status_code}")
        return resp.json()

    def generate_question(self, user_input: str, product_id: str = None, session_id: str = None):
        headers = {"X-Session-ID": session_id} if session_id else {}
        return self._request(
            "POST", "/generate-question",
            json={"userInput": user_input, "productId": product_id},
            headers=headers,
        )

    def list_products(self):
        return self._request("GET", "/products")

    def get_product(self, product_id: str):
        return self._request("GET", f"/products/{product_id}")


def render_reply(reply) -> str:
    lines = [f"Bot: {reply['question']['text']}"]
    score = reply.get("transparencyScore") or 0
    if score:
        lines.append(f"     Transparency {score}/10 - {reply.get('feedback', '')}")
    return "\n".join(lines)


def render_products(products) -> str:
    if not products:
        return "No products yet."
    lines = []
    for p in products:
        summary = p["initialDescription"]
        if len(summary) > 60:
            summary = summary[:57] + "..."
        lines.append(f"  {p['_id']}  [{len(p['details'])} answers]  {summary}")
    return "\n".join(lines)


def render_transcript(product) -> str:
    lines = [f"You: {product['initialDescription']}"]
    for d in product["details"]:
        lines.append(f"Bot: {d['question']}")
        lines.append(f"You: {d['answer']}")
    return "\n".join(lines)


class ChatState:
    def __init__(self):
        self.reset()

    def reset(self, product_id: str = None):
        self.session_id = str(uuid.uuid4())
        self.product_id = product_id


def handle_line(client: IntakeClient, state: ChatState, line: str) -> str:
    """Run one line of user input (a command or an answer) and return what to print."""
    if line == "/products":
        return render_products(client.list_products())
    if line == "/new":
        state.reset()
        return GREETING
    if line.startswith("/open"):
        parts = line.split(maxsplit=1)
        if len(parts) < 2:
            return "Usage: /open <product id>"
        product = client.get_product(parts[1].strip())
        state.reset(product["_id"])
        return render_transcript(product) + "\n\nAdd more detail to continue this product."
    if line.startswith("/"):
        return HELP

    reply = client.generate_question(line, state.product_id, state.session_id)
    state.product_id = reply.get("productId") or state.product_id
    return render_reply(reply)


def main():
    load_dotenv()
    client = IntakeClient(os.getenv("PRODUCT_API_URL", "http://localhost:5000/api"))
    state = ChatState()

    print(GREETING)
    print(HELP + "\n")
    while True:
        line = input("You: ").strip()
        if line.lower() == "exit":
            break
        if not line:
            continue
        try:
            print(handle_line(client, state, line))
        except ApiError as e:
            print(f"Oops! Something went wrong: {e}. Please try again.")
        print()


if __name__ == "__main__":
    main()
