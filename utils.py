from typing import Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from pydantic import BaseModel, ConfigDict, Field

ROLE_USER = "user"
ROLE_MODEL = "model"


class ConversationSession(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str
    history: List[BaseMessage] = Field(default_factory=list)
    linked_product_id: Optional[str] = Field(default=None)
    initial_description: Optional[str] = Field(default=None)
    expires_at: float = 0.0

    def record_turn(self, role: str, text: str) -> None:
        if role == ROLE_USER:
            self.history.append(HumanMessage(content=text))
        elif role == ROLE_MODEL:
            self.history.append(AIMessage(content=text))
        else:
            raise ValueError(f"Unknown turn role: {role!r}")

    def last_model_turn(self) -> Optional[str]:
        # the question the next user input answers
        for msg in reversed(self.history):
            if isinstance(msg, AIMessage):
                return msg.content
        return None

    def link_product(self, product_id: str, initial_description: str) -> None:
        self.linked_product_id = product_id
        self.initial_description = initial_description

    def wire_history(self) -> List[Dict]:
        """History in the {role, parts: [{text}]} shape the chat client renders."""
        return [
            {"role": ROLE_MODEL if isinstance(m, AIMessage) else ROLE_USER, "parts": [{"text": m.content}]}
            for m in self.history
        ]
