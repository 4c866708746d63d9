"""FastAPI server with WebSocket streaming for the grocery assistant."""

import json
import logging
from typing import Callable, Optional

from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from grocery_router import config
from grocery_router.messages import is_ephemeral, message_text
from grocery_router.runner import SupervisorAgent, final_reply

logger = logging.getLogger(__name__)

app = FastAPI(title="Grocery Router")


class AgentRegistry:
    """One SupervisorAgent per user, built on first use."""

    def __init__(self, factory: Callable[[str], SupervisorAgent] = SupervisorAgent):
        self._factory = factory
        self._agents: dict[str, SupervisorAgent] = {}

    def get(self, user_id: Optional[str]) -> SupervisorAgent:
        user_id = user_id or config.DEFAULT_USER_ID
        if user_id not in self._agents:
            self._agents[user_id] = self._factory(user_id)
        return self._agents[user_id]

    def __len__(self) -> int:
        return len(self._agents)


_registry: Optional[AgentRegistry] = None


def get_registry() -> AgentRegistry:
    global _registry
    if _registry is None:
        _registry = AgentRegistry()
    return _registry


class ChatRequest(BaseModel):
    message: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None


def _progress_entries(state: dict) -> list[dict]:
    return [
        {
            "content": message_text(entry),
            "agent": entry.get("agent"),
            "autoRemoveMs": entry["progress"].get("autoRemoveMs"),
        }
        for entry in state.get("messages") or []
        if is_ephemeral(entry)
    ]


@app.post("/api/chat")
async def chat(request: ChatRequest, registry: AgentRegistry = Depends(get_registry)):
    """Run one turn and return the final reply."""
    agent = registry.get(request.user_id)
    state = await agent.chat(request.message, request.session_id)
    return {
        "reply": final_reply(state),
        "sessionId": request.session_id or "default",
        "workflowContext": state.get("workflowContext"),
        "progress": _progress_entries(state),
    }


@app.delete("/api/sessions/{session_id}")
async def clear_session(
    session_id: str,
    user_id: Optional[str] = None,
    registry: AgentRegistry = Depends(get_registry),
):
    """Discard a conversation thread."""
    await registry.get(user_id).clear_session(session_id)
    return {"cleared": session_id}


@app.get("/api/health")
async def health(user_id: Optional[str] = None, registry: AgentRegistry = Depends(get_registry)):
    return registry.get(user_id).health_check()


@app.websocket("/ws/chat")
async def websocket_chat(websocket: WebSocket, registry: AgentRegistry = Depends(get_registry)):
    """WebSocket endpoint streaming progress entries and the final reply."""
    await websocket.accept()

    try:
        while True:
            data = json.loads(await websocket.receive_text())
            user_input = data.get("content", "")
            session_id = data.get("session_id")
            if not user_input.strip():
                continue

            agent = registry.get(data.get("user_id"))
            await websocket.send_text(json.dumps({"type": "status", "content": "thinking"}))

            try:
                final_response = ""
                async for update in agent.stream(user_input, session_id):
                    for fragment in update.values():
                        for entry in (fragment or {}).get("messages") or []:
                            if is_ephemeral(entry):
                                await websocket.send_text(json.dumps({
                                    "type": "progress",
                                    "content": message_text(entry),
                                    "agent": entry.get("agent"),
                                    "autoRemoveMs": entry["progress"].get("autoRemoveMs"),
                                }))
                            elif entry.get("role") == "assistant" and entry.get("agent") != "planner":
                                final_response = message_text(entry) or final_response

                await websocket.send_text(json.dumps({
                    "type": "response",
                    "content": final_response,
                }))

            except Exception as e:
                logger.exception("Turn failed")
                await websocket.send_text(json.dumps({
                    "type": "error",
                    "content": f"Agent error: {str(e)}",
                }))

    except WebSocketDisconnect:
        pass


if __name__ == "__main__":
    import uvicorn

    from grocery_router.logging_config import setup_logging

    setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
